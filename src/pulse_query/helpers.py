from abc import ABC, abstractmethod
from typing import Any, Self


class Disposable(ABC):
	@abstractmethod
	def dispose(self) -> None: ...

	def __enter__(self) -> Self:
		return self

	def __exit__(self, exc_type: Any, exc_value: Any, exc_traceback: Any) -> None:
		self.dispose()
