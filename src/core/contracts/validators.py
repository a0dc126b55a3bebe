"""
JSON Schema Contract Validators

Модуль для валидации JSON данных согласно формальным JSON Schema контрактам.
Использует библиотеку jsonschema для проверки соответствия данных схемам.

Схемы:
- trading_session.json (TradingSession.to_contract)
- deposit_intent.json (DepositIntent.to_contract)
- audit_event.json (AuditEvent, каждое событие EventLog)
"""

import json
from pathlib import Path
from typing import Any, Dict

import jsonschema
from jsonschema import Draft202012Validator


# =============================================================================
# SCHEMA LOADER
# =============================================================================


class SchemaLoader:
    """
    Загрузчик JSON Schema файлов.

    Схемы лежат в schema/ рядом с этим модулем.
    """

    def __init__(self, schema_dir: Path | None = None):
        self._schema_dir = schema_dir or Path(__file__).parent / "schema"
        if not self._schema_dir.exists():
            raise RuntimeError(f"Schema directory not found: {self._schema_dir}")

        # Кэш загруженных схем
        self._schemas: Dict[str, Dict[str, Any]] = {}

    @property
    def schema_dir(self) -> Path:
        return self._schema_dir

    def load_schema(self, schema_name: str) -> Dict[str, Any]:
        """
        Загрузка JSON Schema файла.

        Args:
            schema_name: Имя схемы без расширения (например, 'deposit_intent')

        Returns:
            Загруженная схема как dict

        Raises:
            FileNotFoundError: Если файл схемы не найден
            ValueError: Если схема не проходит meta-validation
        """
        if schema_name in self._schemas:
            return self._schemas[schema_name]

        schema_path = self._schema_dir / f"{schema_name}.json"
        if not schema_path.exists():
            raise FileNotFoundError(f"Schema not found: {schema_path}")

        with open(schema_path, "r", encoding="utf-8") as f:
            schema = json.load(f)

        # Валидируем саму схему (meta-validation)
        try:
            Draft202012Validator.check_schema(schema)
        except jsonschema.SchemaError as e:
            raise ValueError(f"Invalid JSON Schema in {schema_name}.json: {e}")

        self._schemas[schema_name] = schema
        return schema


# Глобальный экземпляр загрузчика
_SCHEMA_LOADER = SchemaLoader()


# =============================================================================
# CONTRACT VALIDATORS
# =============================================================================


class ContractValidator:
    """
    Базовый класс для валидаторов контрактов.

    Инкапсулирует логику валидации данных против JSON Schema.
    """

    def __init__(self, schema_name: str):
        self.schema_name = schema_name
        self.schema = _SCHEMA_LOADER.load_schema(schema_name)
        self.validator = Draft202012Validator(self.schema)

    def validate(self, data: Dict[str, Any]) -> None:
        """
        Валидация данных против схемы.

        Raises:
            ValidationError: Если данные не соответствуют схеме
        """
        self.validator.validate(data)

    def is_valid(self, data: Dict[str, Any]) -> bool:
        return self.validator.is_valid(data)

    def iter_errors(self, data: Dict[str, Any]):
        return self.validator.iter_errors(data)


class TradingSessionValidator(ContractValidator):
    def __init__(self):
        super().__init__("trading_session")


class DepositIntentValidator(ContractValidator):
    def __init__(self):
        super().__init__("deposit_intent")


class AuditEventValidator(ContractValidator):
    def __init__(self):
        super().__init__("audit_event")


# =============================================================================
# CONVENIENCE FUNCTIONS
# =============================================================================

# Экземпляры валидаторов общие для всех вызовов
_TRADING_SESSION_VALIDATOR = TradingSessionValidator()
_DEPOSIT_INTENT_VALIDATOR = DepositIntentValidator()
_AUDIT_EVENT_VALIDATOR = AuditEventValidator()


def validate_trading_session(data: Dict[str, Any]) -> None:
    """
    Валидация trading_session данных.

    Raises:
        ValidationError: Если данные не соответствуют схеме
    """
    _TRADING_SESSION_VALIDATOR.validate(data)


def validate_deposit_intent(data: Dict[str, Any]) -> None:
    """
    Валидация deposit_intent данных.

    Raises:
        ValidationError: Если данные не соответствуют схеме
    """
    _DEPOSIT_INTENT_VALIDATOR.validate(data)


def validate_audit_event(data: Dict[str, Any]) -> None:
    """
    Валидация audit_event данных.

    Raises:
        ValidationError: Если данные не соответствуют схеме
    """
    _AUDIT_EVENT_VALIDATOR.validate(data)
