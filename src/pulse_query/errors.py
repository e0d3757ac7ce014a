from __future__ import annotations

import logging
import traceback
from collections.abc import Callable
from typing import Any, Literal

logger = logging.getLogger(__name__)

ErrorCode = Literal[
	"query.fetch",
	"query.listener",
	"signal.listener",
	"bus.listener",
	"bus.task",
]

ErrorHandler = Callable[[BaseException, ErrorCode, dict[str, Any]], None]


class QueryError(Exception):
	"""Base class for errors raised by pulse-query itself."""


class MutationPendingError(QueryError):
	"""A mutation was run while a previous run of it was still pending."""


class QueryDisposedError(QueryError):
	"""An action was invoked on a disposed query, mutation or bus."""


def _format_stack(exc: BaseException) -> str:
	return "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))


class ErrorReporter:
	"""
	Reports errors that have no caller to propagate to: failing listeners and
	background tasks. Errors are logged, then forwarded to the optional handler.
	"""

	__slots__: tuple[str, ...] = ("_handler",)
	_handler: ErrorHandler | None

	def __init__(self, handler: ErrorHandler | None = None) -> None:
		self._handler = handler

	def set_handler(self, handler: ErrorHandler | None) -> None:
		self._handler = handler

	def report(
		self,
		exc: BaseException,
		*,
		code: ErrorCode,
		details: dict[str, Any] | None = None,
		message: str | None = None,
	) -> None:
		payload_details = dict(details) if details is not None else {}
		payload_message = message or str(exc)
		stack = _format_stack(exc)

		logger.error(
			"pulse-query error code=%s message=%s details=%s\n%s",
			code,
			payload_message,
			payload_details,
			stack,
		)

		if self._handler is not None:
			try:
				self._handler(exc, code, payload_details)
			except Exception as handler_exc:
				logger.exception(
					"Failed to forward error to handler",
					exc_info=handler_exc,
				)


errors = ErrorReporter()


__all__ = [
	"ErrorCode",
	"ErrorHandler",
	"ErrorReporter",
	"MutationPendingError",
	"QueryDisposedError",
	"QueryError",
	"errors",
]
