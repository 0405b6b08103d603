"""
Ошибки пайплайна анализа.

Каждая ошибка знает свой HTTP-статус и сообщение для пользователя:
  - NoFileProvided      → 400, файл не загружен
  - UpstreamCallFailed  → 502, внешний LLM API упал (сеть, ключ, квота)
  - InvalidModelOutput  → 500, ответ модели не удалось превратить в JSON
  - StorageError        → 500, не удалось сохранить загруженный файл
"""

from typing import Optional


class LabReportError(Exception):
    status_code = 500
    default_message = "Analysis failed"

    def __init__(self, message: Optional[str] = None) -> None:
        super().__init__(message or self.default_message)

    @property
    def message(self) -> str:
        return str(self)


class NoFileProvided(LabReportError):
    status_code = 400
    default_message = "No file uploaded"


class UpstreamCallFailed(LabReportError):
    status_code = 502
    default_message = "Upstream analysis service failed"


class InvalidModelOutput(LabReportError):
    status_code = 500
    default_message = "AI returned invalid JSON"

    def __init__(self, raw_text: str = "", message: Optional[str] = None) -> None:
        super().__init__(message)
        # исходный текст модели: только для диагностики, пользователю не отдаём
        self.raw_text = raw_text


class StorageError(LabReportError):
    status_code = 500
    default_message = "Could not store uploaded file"
