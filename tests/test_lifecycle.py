import pytest

from journey_registry.errors import LifecycleError, SchemaError
from journey_registry.lifecycle import check_ready_for_implementation, check_transition, validate_record
from journey_registry.models import JourneyStatus
from journey_registry.settings import RegistrySettings


def _codes(errors) -> list[str]:
    return [error.code for error in errors]


@pytest.mark.parametrize(
    ("old", "new"),
    [
        (JourneyStatus.PROPOSED, JourneyStatus.DEFINED),
        (JourneyStatus.PROPOSED, JourneyStatus.IMPLEMENTED),
        (JourneyStatus.CLARIFIED, JourneyStatus.QUARANTINED),
        (JourneyStatus.IMPLEMENTED, JourneyStatus.DEPRECATED),
        (JourneyStatus.DEFINED, JourneyStatus.DEFINED),
    ],
)
def test_check_transition_allows_forward_moves_and_side_exits(old: JourneyStatus, new: JourneyStatus) -> None:
    check_transition(old, new)


@pytest.mark.parametrize(
    ("old", "new"),
    [
        (JourneyStatus.CLARIFIED, JourneyStatus.DEFINED),
        (JourneyStatus.IMPLEMENTED, JourneyStatus.PROPOSED),
        (JourneyStatus.QUARANTINED, JourneyStatus.IMPLEMENTED),
        (JourneyStatus.DEPRECATED, JourneyStatus.QUARANTINED),
    ],
)
def test_check_transition_rejects_backward_and_terminal_moves(old: JourneyStatus, new: JourneyStatus) -> None:
    with pytest.raises(LifecycleError) as excinfo:
        check_transition(old, new, record_id="JRN-0001")
    assert excinfo.value.code == "illegal-transition"


def test_validate_record_accepts_complete_record(make_record, settings: RegistrySettings) -> None:
    assert validate_record(make_record(id="JRN-0001"), settings=settings) == []


def test_validate_record_reports_every_schema_problem(make_record, settings: RegistrySettings) -> None:
    record = make_record(id="JRN-1", tier="weekly", actor=" ", procedural_steps=[])
    errors = validate_record(record, settings=settings)
    assert all(isinstance(error, SchemaError) for error in errors)
    assert sorted(_codes(errors)) == ["id-format", "missing-field", "status-structure", "tier"]


def test_validate_record_requires_criteria_for_defined(make_record, settings: RegistrySettings) -> None:
    errors = validate_record(make_record(id="JRN-0001", status="defined", acceptance_criteria=[]), settings=settings)
    assert _codes(errors) == ["status-structure"]
    # A proposed record may be a bare idea.
    assert validate_record(make_record(id="JRN-0001", status="proposed", acceptance_criteria=[]), settings=settings) == []


def test_validate_record_flags_duplicate_criteria(make_record, settings: RegistrySettings) -> None:
    record = make_record(
        id="JRN-0001",
        acceptance_criteria=[{"id": "AC-1", "text": "one"}, {"id": "AC-01", "text": "again"}, {"id": "crit", "text": "x"}],
    )
    assert sorted(_codes(validate_record(record, settings=settings))) == ["ac-duplicate", "ac-format"]


def test_validate_record_implemented_requires_tests(make_record, settings: RegistrySettings) -> None:
    errors = validate_record(make_record(id="JRN-0001", status="implemented"), settings=settings)
    assert _codes(errors) == ["tests-required"]
    assert isinstance(errors[0], SchemaError)


def test_validate_record_side_exit_metadata(make_record, settings: RegistrySettings) -> None:
    quarantined = validate_record(make_record(id="JRN-0001", status="quarantined", owner="qa-team"), settings=settings)
    assert _codes(quarantined) == ["quarantine-metadata"]
    assert "issue" in quarantined[0].message
    assert isinstance(quarantined[0], LifecycleError)

    deprecated = validate_record(make_record(id="JRN-0001", status="deprecated"), settings=settings)
    assert _codes(deprecated) == ["deprecation-metadata"]
    assert validate_record(make_record(id="JRN-0001", status="deprecated", replaced_by="JRN-0009"), settings=settings) == []


def test_validate_record_checks_transition_and_id_against_previous(make_record, settings: RegistrySettings) -> None:
    previous = make_record(id="JRN-0001", status="clarified")
    errors = validate_record(make_record(id="JRN-0002", status="defined"), settings=settings, previous=previous)
    assert sorted(_codes(errors)) == ["id-immutable", "illegal-transition"]


def test_check_ready_for_implementation(make_record) -> None:
    with pytest.raises(LifecycleError):
        check_ready_for_implementation(make_record(id="JRN-0001", status="proposed"))
    with pytest.raises(LifecycleError):
        check_ready_for_implementation(make_record(id="JRN-0001", status="deprecated", replaced_by="JRN-0002"))
    assert check_ready_for_implementation(make_record(id="JRN-0001", status="clarified")) == []
    warnings = check_ready_for_implementation(make_record(id="JRN-0001", status="defined"))
    assert warnings and "clarified" in warnings[0]
