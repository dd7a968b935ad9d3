"""
Tests for configuration validation.
"""

import copy

import pytest
from typing import Any, Dict

from rampart.core.domain.configuration import BotConfiguration
from rampart.infrastructure.config.validator import ConfigurationValidator, validate_configuration


@pytest.fixture
def candidate() -> Dict[str, Any]:
    return BotConfiguration().to_dict()


class TestConfigurationValidator:
    """Test cases for the validator."""

    def setup_method(self) -> None:
        self.validator = ConfigurationValidator()

    def test_defaults_are_valid(self, candidate: Dict[str, Any]) -> None:
        result = self.validator.validate(candidate)

        assert result.valid
        assert result.errors == []

    def test_snapshot_input(self) -> None:
        assert self.validator.validate(BotConfiguration()).valid

    def test_validation_is_pure(self, candidate: Dict[str, Any]) -> None:
        candidate['rate_limiting']['rpm'] = -1
        before = copy.deepcopy(candidate)

        first = self.validator.validate(candidate)
        second = self.validator.validate(candidate)

        assert candidate == before
        assert first == second
        assert not first.valid

    def test_missing_section(self, candidate: Dict[str, Any]) -> None:
        del candidate['gemini']

        result = self.validator.validate(candidate)

        assert not result.valid
        assert any("'gemini' is a required property" in error for error in result.errors)

    def test_non_object_root(self) -> None:
        result = self.validator.validate(['not', 'a', 'mapping'])  # type: ignore[arg-type]
        assert not result.valid

    @pytest.mark.parametrize("path,value", [
        (('gemini', 'temperature'), 2.5),
        (('gemini', 'top_p'), 1.5),
        (('rate_limiting', 'rpm'), 0),
        (('rate_limiting', 'daily'), 'many'),
        (('features', 'roasting', 'base_chance'), 1.2),
        (('features', 'code_execution'), 'yes'),
    ])
    def test_out_of_range_values(self, candidate: Dict[str, Any], path: Any, value: Any) -> None:
        section = candidate
        for key in path[:-1]:
            section = section[key]
        section[path[-1]] = value

        result = self.validator.validate(candidate)

        assert not result.valid
        assert any(error.startswith('.'.join(path)) for error in result.errors)

    def test_rpm_must_fit_daily_budget(self, candidate: Dict[str, Any]) -> None:
        candidate['rate_limiting']['rpm'] = 30
        candidate['rate_limiting']['daily'] = 500

        result = self.validator.validate(candidate)

        assert not result.valid
        assert any('exceeds rate_limiting.daily / 24' in error for error in result.errors)

    def test_rpm_equal_to_daily_budget_is_valid(self, candidate: Dict[str, Any]) -> None:
        candidate['rate_limiting']['rpm'] = 20
        candidate['rate_limiting']['daily'] = 480
        candidate['rate_limiting']['burst_size'] = 5

        assert self.validator.validate(candidate).valid

    def test_base_chance_above_max_chance(self, candidate: Dict[str, Any]) -> None:
        candidate['features']['roasting']['base_chance'] = 0.95
        candidate['features']['roasting']['max_chance'] = 0.9

        result = self.validator.validate(candidate)

        assert not result.valid
        assert any('base_chance' in error for error in result.errors)

    def test_warnings_do_not_invalidate(self, candidate: Dict[str, Any]) -> None:
        candidate['features']['code_execution'] = True
        candidate['features']['structured_output'] = False
        candidate['rate_limiting']['burst_size'] = 15
        candidate['features']['context_memory']['max_context_chars'] = 200000

        result = self.validator.validate(candidate)

        assert result.valid
        assert len(result.warnings) == 3

    def test_errors_are_sorted(self, candidate: Dict[str, Any]) -> None:
        candidate['gemini']['top_p'] = 3
        candidate['gemini']['temperature'] = 5

        result = self.validator.validate(candidate)

        assert result.errors == sorted(result.errors)
        assert len(result.errors) == 2

    def test_module_level_helper(self, candidate: Dict[str, Any]) -> None:
        assert validate_configuration(candidate).to_dict() == {
            'valid': True, 'errors': [], 'warnings': []}
