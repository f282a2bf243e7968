# buildnotify/core/formatters.py
"""
Notification text templates, one per action.

Each template is a pure function ``(data, now) -> str`` registered under
its action tag with ``@template(...)``.  Adding an action means adding
one decorated function here; ``format_message`` never changes.

Texts are Russian and use HTML markup (``<b>`` titles) for the Telegram
``parse_mode=HTML``.  Payload values are substituted as-is: nothing is
escaped, and a missing field renders as an empty string.
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Callable, Mapping

from buildnotify.core.domain import NotificationAction
from buildnotify.core.errors import UnsupportedAction

TemplateFn = Callable[[Mapping[str, Any], datetime], str]

_TEMPLATES: dict[str, TemplateFn] = {}

# ru-RU locale style, e.g. "19.10.2026, 14:05:09"
TIMESTAMP_FORMAT = "%d.%m.%Y, %H:%M:%S"


def template(action: NotificationAction) -> Callable[[TemplateFn], TemplateFn]:
    """Register a template function for an action tag."""
    def decorator(fn: TemplateFn) -> TemplateFn:
        if action.value in _TEMPLATES:
            raise ValueError(f"Template already registered: {action.value}")
        _TEMPLATES[action.value] = fn
        return fn
    return decorator


def _v(data: Mapping[str, Any], key: str) -> str:
    value = data.get(key)
    if value is None:
        return ""
    return str(value)


def _compose(title: str, *lines: str) -> str:
    return f"<b>{title}</b>\n\n" + "\n".join(lines)


# ============================================================================
# TEMPLATES
# ============================================================================

@template(NotificationAction.PROJECT_STATUS_UPDATE)
def _project_status_update(data: Mapping[str, Any], now: datetime) -> str:
    return _compose(
        "🏗️ Обновление проекта",
        f"Проект: {_v(data, 'projectName')}",
        f"Статус: {_v(data, 'status')}",
        f"Прогресс: {_v(data, 'progress')}%",
        f"Бюджет: {_v(data, 'budget')} руб.",
        f"Потрачено: {_v(data, 'spent')} руб.",
    )


@template(NotificationAction.ATTENDANCE_REMINDER)
def _attendance_reminder(data: Mapping[str, Any], now: datetime) -> str:
    return _compose(
        "⏰ Напоминание о посещаемости",
        f"Привет, {_v(data, 'workerName')}!",
        f"Не забудь отметиться на объекте \"{_v(data, 'projectName')}\"",
        f"Время: {_v(data, 'time')}",
    )


@template(NotificationAction.EXPENSE_ADDED)
def _expense_added(data: Mapping[str, Any], now: datetime) -> str:
    return _compose(
        "💰 Новый расход",
        f"Категория: {_v(data, 'category')}",
        f"Сумма: {_v(data, 'amount')} руб.",
        f"Проект: {_v(data, 'projectName')}",
        f"Дата: {_v(data, 'date')}",
    )


@template(NotificationAction.TASK_ASSIGNED)
def _task_assigned(data: Mapping[str, Any], now: datetime) -> str:
    return _compose(
        "📋 Новая задача",
        f"Задача: {_v(data, 'taskTitle')}",
        f"Проект: {_v(data, 'projectName')}",
        f"Исполнитель: {_v(data, 'workerName')}",
        f"Срок: {_v(data, 'dueDate')}",
    )


@template(NotificationAction.BUDGET_ALERT)
def _budget_alert(data: Mapping[str, Any], now: datetime) -> str:
    return _compose(
        "⚠️ Предупреждение о бюджете",
        f"Проект: {_v(data, 'projectName')}",
        f"Превышение бюджета: {_v(data, 'overrun')}%",
        f"Лимит: {_v(data, 'budget')} руб.",
        f"Потрачено: {_v(data, 'spent')} руб.",
    )


@template(NotificationAction.DAILY_REPORT)
def _daily_report(data: Mapping[str, Any], now: datetime) -> str:
    return _compose(
        "📊 Ежедневный отчет",
        f"Активных проектов: {_v(data, 'activeProjects')}",
        f"Работников на объектах: {_v(data, 'workersOnSite')}",
        f"Расходы за день: {_v(data, 'dailyExpenses')} руб.",
        f"Выполненных задач: {_v(data, 'completedTasks')}",
    )


@template(NotificationAction.PAYMENT_PROCESSED)
def _payment_processed(data: Mapping[str, Any], now: datetime) -> str:
    return _compose(
        "💵 Обработан платеж",
        f"Сумма: {_v(data, 'amount')} руб.",
        f"Работник: {_v(data, 'workerName')}",
    )


@template(NotificationAction.SECURITY_ALERT)
def _security_alert(data: Mapping[str, Any], now: datetime) -> str:
    return _compose(
        "🚨 Оповещение безопасности",
        _v(data, "alertMessage"),
        f"Время: {now.strftime(TIMESTAMP_FORMAT)}",
    )


# ============================================================================
# PUBLIC API
# ============================================================================

def list_actions() -> list[str]:
    """Registered action tags, in registration order."""
    return list(_TEMPLATES)


def is_supported(action: object) -> bool:
    if isinstance(action, NotificationAction):
        action = action.value
    return isinstance(action, str) and action in _TEMPLATES


def format_message(
    action: object,
    data: Mapping[str, Any] | None,
    *,
    now: datetime | None = None,
) -> str:
    """
    Render the notification text for ``action``.

    Raises:
        UnsupportedAction: no template is registered for the tag
    """
    if isinstance(action, NotificationAction):
        action = action.value
    if not is_supported(action):
        raise UnsupportedAction(action)

    fn = _TEMPLATES[action]  # type: ignore[index]
    return fn(data or {}, now or datetime.now(timezone.utc))
