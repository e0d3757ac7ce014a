import logging
import os
from typing import Literal, cast

QueryEnv = Literal["dev", "prod"]

ENV_PULSE_QUERY_ENV = "PULSE_QUERY_ENV"
ENV_PULSE_QUERY_FETCH_ON_CREATE = "PULSE_QUERY_FETCH_ON_CREATE"
ENV_PULSE_QUERY_LOG_LEVEL = "PULSE_QUERY_LOG_LEVEL"

_FALSY = {"", "0", "false", "False", "no", "off"}


class Env:
	"""Environment-driven settings. Values are read from os.environ on access."""

	@property
	def query_env(self) -> QueryEnv:
		value = os.environ.get(ENV_PULSE_QUERY_ENV, "prod")
		if value not in ("dev", "prod"):
			raise ValueError(
				f"{ENV_PULSE_QUERY_ENV} must be 'dev' or 'prod', got {value!r}"
			)
		return cast(QueryEnv, value)

	@property
	def fetch_on_create(self) -> bool:
		value = os.environ.get(ENV_PULSE_QUERY_FETCH_ON_CREATE)
		if value is None:
			return False
		return value not in _FALSY

	@property
	def log_level(self) -> str | None:
		value = os.environ.get(ENV_PULSE_QUERY_LOG_LEVEL)
		if not value:
			# Verbose by default while developing
			return "DEBUG" if self.query_env == "dev" else None
		return value.upper()


env = Env()


def configure_logging(level: str | int | None = None) -> None:
	"""Apply the configured log level to the `pulse_query` logger."""
	if level is None:
		level = env.log_level
	if level is None:
		return
	logging.getLogger("pulse_query").setLevel(level)
