"""
Structural and semantic validation of bot configuration candidates.

Structural rules are expressed as a JSON schema and checked with
``jsonschema``; cross-field rules are checked in Python afterwards. The
validator is pure: it never mutates its input and the same input always
yields the same result.
"""

import copy
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Union

import jsonschema

from ...core.domain.configuration import BotConfiguration

logger = logging.getLogger(__name__)

_NUMBER = {'type': 'number'}
_POSITIVE_INT = {'type': 'integer', 'minimum': 1}
_NON_NEGATIVE_INT = {'type': 'integer', 'minimum': 0}
_PROBABILITY = {'type': 'number', 'minimum': 0, 'maximum': 1}
_BOOL = {'type': 'boolean'}


def _section(properties: Dict[str, Any], required: Union[List[str], None] = None) -> Dict[str, Any]:
    schema: Dict[str, Any] = {'type': 'object', 'properties': properties}
    if required:
        schema['required'] = required
    return schema


CONFIGURATION_SCHEMA: Dict[str, Any] = {
    '$schema': 'http://json-schema.org/draft-07/schema#',
    'type': 'object',
    'required': ['discord', 'gemini', 'rate_limiting', 'features'],
    'properties': {
        'version': {'type': 'string'},
        'last_modified': {'type': 'string'},
        'modified_by': {'type': 'string'},
        'discord': _section({
            'intents': {'type': 'array', 'items': {'type': 'string'}},
            'permissions': {'type': 'object'},
            'commands': {
                'type': 'object',
                'additionalProperties': _section({
                    'enabled': _BOOL,
                    'permissions': {'type': 'string'},
                    'cooldown': _NON_NEGATIVE_INT,
                }),
            },
        }, ['intents']),
        'gemini': _section({
            'model': {'type': 'string', 'minLength': 1},
            'temperature': {'type': 'number', 'minimum': 0, 'maximum': 2},
            'top_k': _POSITIVE_INT,
            'top_p': _PROBABILITY,
            'max_tokens': _POSITIVE_INT,
            'safety_settings': {'type': 'object', 'additionalProperties': {'type': 'string'}},
            'system_instructions': {'type': 'object', 'additionalProperties': {'type': 'string'}},
            'grounding': _section({'threshold': _PROBABILITY, 'enabled': _BOOL}),
            'thinking': _section({'budget': _NON_NEGATIVE_INT, 'include_in_response': _BOOL}),
        }, ['model', 'temperature']),
        'rate_limiting': _section({
            'rpm': _POSITIVE_INT,
            'daily': _POSITIVE_INT,
            'burst_size': _POSITIVE_INT,
            'safety_margin': {'type': 'number', 'exclusiveMinimum': 0, 'maximum': 1},
            'retry_options': _section({
                'max_retries': _NON_NEGATIVE_INT,
                'retry_delay': _NON_NEGATIVE_INT,
                'retry_multiplier': {'type': 'number', 'minimum': 1},
            }),
        }, ['rpm', 'daily']),
        'features': _section({
            'roasting': _section({
                'enabled': _BOOL,
                'base_chance': _PROBABILITY,
                'consecutive_bonus': _PROBABILITY,
                'max_chance': _PROBABILITY,
                'cooldown_enabled': _BOOL,
                'mood_system': {'type': 'object'},
                'psychological_warfare': {'type': 'object'},
            }),
            'code_execution': _BOOL,
            'structured_output': _BOOL,
            'monitoring': _section({
                'enabled': _BOOL,
                'log_level': {'type': 'string', 'enum': ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL',
                                                         'debug', 'info', 'warning', 'warn', 'error']},
                'health_metrics': _section({
                    'enabled': _BOOL,
                    'collection_interval': _POSITIVE_INT,
                    'retention_days': _POSITIVE_INT,
                }),
                'alerts': _section({
                    'enabled': _BOOL,
                    'memory_threshold': _POSITIVE_INT,
                    'error_rate_threshold': {'type': 'number', 'minimum': 0, 'maximum': 100},
                    'response_time_threshold': _POSITIVE_INT,
                }),
                'graceful_degradation': {'type': 'object'},
            }),
            'context_memory': _section({
                'enabled': _BOOL,
                'max_messages': _POSITIVE_INT,
                'timeout_minutes': _POSITIVE_INT,
                'max_context_chars': _POSITIVE_INT,
                'compression_enabled': _BOOL,
                'cross_server_enabled': _BOOL,
            }),
            'caching': _section({
                'enabled': _BOOL,
                'max_size': _POSITIVE_INT,
                'ttl_minutes': _POSITIVE_INT,
                'compression_enabled': _BOOL,
            }),
        }),
    },
}


@dataclass(frozen=True)
class ValidationResult:
    """Outcome of validating a candidate configuration."""
    valid: bool
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {'valid': self.valid, 'errors': list(self.errors), 'warnings': list(self.warnings)}


class ConfigurationValidator:
    """Validates candidate configurations against the schema and cross-field rules."""

    def __init__(self, schema: Union[Dict[str, Any], None] = None) -> None:
        self._schema = schema or CONFIGURATION_SCHEMA
        jsonschema.Draft7Validator.check_schema(self._schema)
        self._validator = jsonschema.Draft7Validator(self._schema)

    @property
    def schema(self) -> Dict[str, Any]:
        return copy.deepcopy(self._schema)

    def validate(self, candidate: Union[Mapping[str, Any], BotConfiguration]) -> ValidationResult:
        """
        Validate a candidate configuration.

        Args:
            candidate: Dictionary form of a configuration or a snapshot

        Returns:
            ValidationResult with sorted errors and warnings
        """
        if isinstance(candidate, BotConfiguration):
            data: Any = candidate.to_dict()
        else:
            data = copy.deepcopy(candidate)

        if not isinstance(data, Mapping):
            return ValidationResult(False, ["<root>: configuration must be an object"])

        errors = sorted({self._format_error(error) for error in self._validator.iter_errors(data)})
        warnings: List[str] = []

        # Cross-field rules only make sense on structurally sound sections
        if not errors:
            errors.extend(self._check_rate_limits(data, warnings))
            errors.extend(self._check_roasting(data))
            warnings.extend(self._check_features(data))

        return ValidationResult(valid=not errors, errors=sorted(errors), warnings=sorted(warnings))

    def _format_error(self, error: jsonschema.ValidationError) -> str:
        location = '.'.join(str(part) for part in error.absolute_path) or '<root>'
        return f"{location}: {error.message}"

    def _check_rate_limits(self, data: Mapping[str, Any], warnings: List[str]) -> List[str]:
        errors: List[str] = []
        limits = data.get('rate_limiting', {})
        rpm = limits.get('rpm')
        daily = limits.get('daily')
        if rpm is not None and daily is not None and rpm > daily / 24:
            errors.append(
                f"rate_limiting.rpm: {rpm} exceeds rate_limiting.daily / 24 ({daily / 24:g})")

        burst = limits.get('burst_size')
        if burst is not None and rpm is not None and burst > rpm:
            warnings.append(f"rate_limiting.burst_size: {burst} exceeds rate_limiting.rpm ({rpm})")
        return errors

    def _check_roasting(self, data: Mapping[str, Any]) -> List[str]:
        roasting = data.get('features', {}).get('roasting', {})
        base = roasting.get('base_chance')
        maximum = roasting.get('max_chance')
        if base is not None and maximum is not None and base > maximum:
            return [f"features.roasting.base_chance: {base} exceeds features.roasting.max_chance ({maximum})"]
        return []

    def _check_features(self, data: Mapping[str, Any]) -> List[str]:
        warnings: List[str] = []
        features = data.get('features', {})
        if features.get('code_execution') and not features.get('structured_output'):
            warnings.append("features.code_execution: enabled without features.structured_output")
        memory = features.get('context_memory', {})
        if memory.get('max_context_chars', 0) > 100000:
            warnings.append("features.context_memory.max_context_chars: above 100000 may affect performance")
        return warnings


def validate_configuration(candidate: Union[Mapping[str, Any], BotConfiguration]) -> ValidationResult:
    """Validate ``candidate`` with the default schema."""
    return ConfigurationValidator().validate(candidate)
