"""
HOOKWATCH - Result Validator Tests
"""

import pytest

from hookwatch.core.exceptions import ValidationException
from hookwatch.models.entities import (
    Execution,
    ResponseValidationRule,
    TestConfiguration,
    TestResult,
    ValidationViolation,
)
from hookwatch.services.validator import (
    ResponseFieldRule,
    ResultValidator,
    ValidationRule,
    resolve_field_path,
)


def _result(configuration, *responses) -> TestResult:
    result = TestResult(webhook_id="wh_1", test_configuration=configuration)
    for status_code, body, response_time in responses:
        execution = Execution(organization_id="org_1", webhook_id="wh_1")
        success = 200 <= status_code < 300
        execution.finalize(
            success=success,
            status_code=status_code,
            response_time_ms=response_time,
            response_body=body,
            error_code=None if success else f"http_{status_code}",
            error_message=None if success else f"HTTP {status_code}",
        )
        result.attach(execution)
    result.compute_statistics(1.0)
    return result


class TestResultValidator:
    """Tests for the default rules."""

    @pytest.fixture
    def validator(self):
        return ResultValidator()

    def test_all_expected(self, validator):
        config = TestConfiguration(webhook_id="wh_1", expected_status_codes=[200, 201])
        result = _result(config, (200, {}, 50), (201, {}, 70))

        assert validator.validate(result, config) == []
        assert result.validation_passed is True

    def test_raising_rule_recorded_as_violation(self, validator):
        class Broken(ValidationRule):
            def check(self, result, configuration):
                raise KeyError("status")

        config = TestConfiguration(webhook_id="wh_1")
        result = _result(config, (200, {}, 10))

        violations = validator.validate(result, config, extra_rules=[Broken()])

        assert [v.rule for v in violations] == ["Broken"]
        assert "KeyError" in violations[0].message
        assert result.validation_passed is False

    def test_unexpected_status_code(self, validator):
        config = TestConfiguration(webhook_id="wh_1", expected_status_codes=[200, 201])
        result = _result(config, (404, {}, 30))

        violations = validator.validate(result, config)

        assert result.validation_passed is False
        assert [v.rule for v in violations] == ["expected_status_codes"]
        assert violations[0].actual == 404
        assert violations[0].expected == [200, 201]

    def test_network_failure_counts_as_unexpected(self, validator):
        config = TestConfiguration(webhook_id="wh_1")
        result = _result(config, (0, {"error": "timed out"}, 5000))

        violations = validator.validate(result, config)

        assert len(violations) == 1
        assert violations[0].actual == 0

    def test_one_violation_per_execution(self, validator):
        config = TestConfiguration(webhook_id="wh_1")
        result = _result(config, (500, {}, 10), (200, {}, 10), (502, {}, 10))

        violations = validator.validate(result, config)

        assert sorted(v.actual for v in violations) == [500, 502]

    def test_slow_average_response(self, validator):
        config = TestConfiguration(webhook_id="wh_1", expected_response_time_ms=100)
        result = _result(config, (200, {}, 150), (200, {}, 250))

        violations = validator.validate(result, config)

        assert [v.rule for v in violations] == ["expected_response_time_ms"]
        assert violations[0].actual == 200

    def test_extra_rule_per_call(self, validator):
        class AlwaysFails(ValidationRule):
            def check(self, result, configuration):
                return [ValidationViolation(rule="always", message="nope")]

        config = TestConfiguration(webhook_id="wh_1")
        result = _result(config, (200, {}, 10))

        violations = validator.validate(result, config, extra_rules=[AlwaysFails()])

        assert [v.rule for v in violations] == ["always"]
        # the validator itself is unchanged
        assert validator.validate(result, config) == []


class TestResponseFieldRule:

    BODY = {
        "status": "ok",
        "data": {"id": 42, "tags": ["a", "b"], "active": True},
        "message": "order accepted",
    }

    def _check(self, *rules):
        config = TestConfiguration(webhook_id="wh_1", response_validation_rules=list(rules))
        result = _result(config, (200, self.BODY, 10))
        return ResponseFieldRule().check(result, config)

    def test_resolve_field_path(self):
        assert resolve_field_path(self.BODY, "data.id") == 42
        assert resolve_field_path(self.BODY, "data.tags.1") == "b"
        assert resolve_field_path(self.BODY, "data.missing") is resolve_field_path(self.BODY, "nope")

    def test_passing_rules(self):
        violations = self._check(
            ResponseValidationRule(field_path="status", validation_type="exists"),
            ResponseValidationRule(field_path="status", validation_type="equals", expected_value="ok"),
            ResponseValidationRule(field_path="data.tags", validation_type="contains", expected_value="a"),
            ResponseValidationRule(field_path="message", validation_type="matches", regex_pattern=r"^order \w+$"),
            ResponseValidationRule(field_path="data.id", validation_type="type", expected_value="integer"),
        )
        assert violations == []

    def test_missing_field(self):
        violations = self._check(ResponseValidationRule(field_path="data.email", validation_type="exists"))

        assert [v.rule for v in violations] == ["response.data.email.exists"]

    def test_boolean_is_not_a_number(self):
        violations = self._check(
            ResponseValidationRule(field_path="data.active", validation_type="type", expected_value="number")
        )
        assert len(violations) == 1
        assert violations[0].actual == "boolean"

    def test_failed_executions_skipped(self):
        rule = ResponseValidationRule(field_path="status", validation_type="exists")
        config = TestConfiguration(webhook_id="wh_1", response_validation_rules=[rule])
        result = _result(config, (500, {"error": "boom"}, 10))

        assert ResponseFieldRule().check(result, config) == []

    def test_invalid_pattern_raises(self):
        with pytest.raises(ValidationException) as exc_info:
            self._check(ResponseValidationRule(field_path="message", validation_type="matches", regex_pattern="(unclosed"))

        assert exc_info.value.error_code == "VAL_001"
        assert exc_info.value.details["violations"][0]["pattern"] == "(unclosed"

    def test_invalid_pattern_fails_validation(self):
        rule = ResponseValidationRule(field_path="message", validation_type="matches", regex_pattern="(unclosed")
        config = TestConfiguration(webhook_id="wh_1", response_validation_rules=[rule])
        result = _result(config, (200, self.BODY, 10))

        violations = ResultValidator().validate(result, config, extra_rules=[ResponseFieldRule()])

        assert [v.rule for v in violations] == ["ResponseFieldRule"]
        assert "Invalid pattern" in violations[0].message
        assert result.validation_passed is False
