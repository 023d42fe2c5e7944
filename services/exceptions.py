"""
Исключения сервисного слоя.
API переводит их в HTTP-коды, фоновые задачи логируют и продолжают работу.
"""


class FleetManagerError(Exception):
    """Базовое исключение."""
    pass


class InboundValidationError(FleetManagerError):
    """Недопустимая комбинация полей инбаунда (первое найденное нарушение)."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class AccountValidationError(FleetManagerError):
    pass


class ConflictError(FleetManagerError):
    """Дубликат tag / порта / username / токена."""
    pass


class NotFoundError(FleetManagerError):

    def __init__(self, kind: str, record_id):
        self.kind = kind
        self.record_id = record_id
        super().__init__(f"{kind} {record_id} not found")


class BuiltinInboundError(FleetManagerError):
    """Встроенный инбаунд нельзя удалить, только выключить."""

    def __init__(self, tag: str):
        self.tag = tag
        super().__init__(f"Cannot delete builtin inbound '{tag}'. Disable it instead.")


class SynthesisError(FleetManagerError):
    """Конфиг sing-box не собран; файл на диске не трогаем."""

    def __init__(self, tag: str, reason: str):
        self.tag = tag
        self.reason = reason
        super().__init__(f"Inbound '{tag}': {reason}")


class DaemonUnavailableError(FleetManagerError):
    """Stats API демона не отвечает (скорее всего sing-box не запущен)."""
    pass


class StatsQueryError(FleetManagerError):
    pass


class ReloadSignalError(FleetManagerError):
    pass
