"""
Engine configuration tests.

Verifies:
- The packaged defaults load and match the kernel's built-in settings
- Required keys and value ranges are enforced
- The checksum identifies a document deterministically
- Bridges produce working kernel settings, policies and renderers
"""

import copy
from decimal import Decimal
from uuid import uuid4

import pytest
import yaml

from notes_config import DEFAULT_CONFIG_PATH, get_active_config
from notes_config.bridges import build_capability_policy, build_lifecycle_settings, build_renderer
from notes_config.loader import compute_checksum, load_yaml_file, parse_engine_config
from notes_kernel.adapters.renderer import PlainTextNoteRenderer, ReportLabNoteRenderer
from notes_kernel.domain.lifecycle import Actor, CapabilityPolicy, NoteOperation, NoteType
from notes_kernel.domain.settings import LifecycleSettings


@pytest.fixture
def raw():
    return load_yaml_file(DEFAULT_CONFIG_PATH)


def _write(tmp_path, data) -> str:
    path = tmp_path / "engine.yaml"
    path.write_text(yaml.safe_dump(data), encoding="utf-8")
    return str(path)


class TestDefaults:
    def test_loads_packaged_defaults(self):
        config = get_active_config()

        assert config.config_id == "notes-engine-default"
        assert config.currency == "NGN"
        assert config.defaults.vat_pct == Decimal("7.5")
        assert config.coinsurance.tolerance == Decimal("0.01")
        assert config.artifacts.renderer == "pdf"
        assert [c.operation for c in config.capabilities] == sorted(
            op.value for op in NoteOperation
        )

    def test_defaults_match_kernel_settings(self):
        settings = build_lifecycle_settings(get_active_config())
        builtin = LifecycleSettings()

        assert settings.currency == builtin.currency
        assert settings.default_vat_pct == builtin.default_vat_pct
        assert settings.default_agent_commission_pct == builtin.default_agent_commission_pct
        assert settings.coinsurance_tolerance == builtin.coinsurance_tolerance
        assert settings.reminder_rules == builtin.reminder_rules

    def test_policy_matches_builtin_table(self):
        policy = build_capability_policy(get_active_config())
        builtin = CapabilityPolicy.default()

        for operation in NoteOperation:
            for role in ("Admin", "Underwriter", "Accounts", "Marketer", "Viewer"):
                for level in range(4):
                    actor = Actor(actor_id=uuid4(), role=role, approval_level=level)
                    assert policy.allows(actor, operation) == builtin.allows(actor, operation)

    def test_trace_logged(self, captured_logs):
        config = get_active_config()

        trace = [r for r in captured_logs() if r["message"] == "NOTES_CONFIG_TRACE"]
        assert trace[0]["config_set_id"] == config.config_id
        assert trace[0]["checksum"] == config.checksum
        assert trace[0]["capability_count"] == 6


class TestChecksum:
    def test_deterministic(self, raw):
        assert compute_checksum(raw) == compute_checksum(copy.deepcopy(raw))

    def test_key_order_does_not_matter(self, raw):
        reordered = dict(reversed(list(raw.items())))
        assert compute_checksum(reordered) == compute_checksum(raw)

    def test_any_change_changes_checksum(self, raw):
        changed = copy.deepcopy(raw)
        changed["defaults"]["vat_pct"] = "5"
        assert compute_checksum(changed) != compute_checksum(raw)


class TestValidation:
    @pytest.mark.parametrize("key", ["currency", "defaults", "capabilities", "artifacts"])
    def test_missing_key(self, raw, key):
        del raw[key]
        with pytest.raises(KeyError):
            parse_engine_config(raw)

    def test_missing_nested_key(self, raw):
        del raw["capabilities"]["issue"]["min_approval_level"]
        with pytest.raises(KeyError):
            parse_engine_config(raw)

    @pytest.mark.parametrize(
        "mutate",
        [
            lambda d: d.__setitem__("currency", "NAIRA"),
            lambda d: d["defaults"].__setitem__("vat_pct", "120"),
            lambda d: d["defaults"].__setitem__("agent_commission_pct", "ten"),
            lambda d: d["defaults"].__setitem__("vat_pct", "7.50001"),
            lambda d: d["coinsurance"].__setitem__("tolerance", "-0.5"),
            lambda d: d["allocation"].__setitem__("max_retries", -1),
            lambda d: d["artifacts"].__setitem__("renderer", "docx"),
            lambda d: d["reminders"][0].__setitem__("note_type", "XN"),
            lambda d: d["reminders"][0].__setitem__("due_in_days", True),
            lambda d: d["capabilities"].__setitem__("delete", {"min_approval_level": 1}),
            lambda d: d["capabilities"]["approve"].__setitem__("roles", "Admin"),
        ],
    )
    def test_bad_values(self, raw, mutate):
        mutate(raw)
        with pytest.raises(ValueError):
            parse_engine_config(raw)

    def test_non_mapping_document(self, tmp_path):
        with pytest.raises(ValueError):
            load_yaml_file(_write(tmp_path, ["a", "b"]))

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            get_active_config(tmp_path / "absent.yaml")


class TestBridges:
    def test_override_file(self, tmp_path, raw):
        raw["currency"] = "usd"
        raw["defaults"]["vat_pct"] = "5"
        raw["reminders"] = [{"note_type": "cn", "reminder_type": "Chase", "due_in_days": 7}]

        settings = build_lifecycle_settings(get_active_config(_write(tmp_path, raw)))

        assert settings.currency == "USD"
        assert settings.default_vat_pct == Decimal("5")
        assert [(r.note_type, r.reminder_type) for r in settings.reminder_rules] == [
            (NoteType.CN, "Chase"),
        ]
        assert settings.reminders_for("DN") == ()

    def test_empty_roles_admit_everyone(self, raw):
        raw["capabilities"]["dispatch"] = {"roles": [], "min_approval_level": 0}

        policy = build_capability_policy(parse_engine_config(raw))

        assert policy.allows(Actor(uuid4(), "Viewer", 0), NoteOperation.DISPATCH)

    def test_renderer_selection(self, raw):
        assert isinstance(build_renderer(parse_engine_config(raw)), ReportLabNoteRenderer)

        raw["artifacts"]["renderer"] = "text"
        assert isinstance(build_renderer(parse_engine_config(raw)), PlainTextNoteRenderer)

    def test_configured_service_end_to_end(
        self, tmp_path, raw, session_factory, registry, artifact_store, clock,
    ):
        from notes_kernel.services.artifact_binder import ArtifactBinder
        from notes_kernel.services.note_lifecycle_service import NoteLifecycleService

        raw["artifacts"]["renderer"] = "text"
        raw["allocation"]["retry_backoff_seconds"] = 0
        config = get_active_config(_write(tmp_path, raw))
        service = NoteLifecycleService(
            session_factory,
            registry,
            ArtifactBinder(build_renderer(config), artifact_store, registry),
            build_lifecycle_settings(config),
            clock,
        )

        note = service.create_note(
            {"note_type": "DN", "client_id": "CL-001", "policy_id": "POL-001",
             "gross_premium": "1000", "brokerage_pct": "10"},
            Actor(uuid4(), "Marketer", 1),
        )

        assert note.vat_on_brokerage == Decimal("7.50")
        assert note.artifact_ref.endswith(".txt")
