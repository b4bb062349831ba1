"""Tests for plan loading and override merging."""

import pytest

from cluster_tests.bootstrap.exceptions import PlanParseError
from cluster_tests.bootstrap.models import BootstrapPlan, ComponentSpec
from cluster_tests.bootstrap.planner import (
    load_override,
    load_plan,
    merge_component,
    merge_plans,
    override_from_env,
    parse_plan,
)
from tests.fixtures.sample_data import (
    DUPLICATE_PLAN_YAML,
    MINIMAL_PLAN_YAML,
    OVERRIDE_JSON,
    PLAN_YAML,
)

pytestmark = pytest.mark.unit


class TestLoadPlan:
    """Tests for load_plan and parse_plan."""

    def test_parse_inline_document(self):
        plan = parse_plan(PLAN_YAML)
        assert plan.kind_cluster_config == "configs/kind-cluster-with-extramounts.yaml"
        assert [c.name for c in plan.components] == [
            "cluster-api-provider-intel",
            "cluster-manager",
            "cluster-agent",
        ]

    def test_load_from_path(self, tmp_path):
        plan_file = tmp_path / "plan.yaml"
        plan_file.write_text(MINIMAL_PLAN_YAML)
        plan = load_plan(plan_file)
        assert plan.components[0].name == "only"

    def test_load_from_path_string(self, tmp_path):
        plan_file = tmp_path / "plan.yaml"
        plan_file.write_text(MINIMAL_PLAN_YAML)
        assert load_plan(str(plan_file)).components[0].name == "only"

    def test_missing_file(self, tmp_path):
        with pytest.raises(PlanParseError, match="Cannot read plan file"):
            load_plan(tmp_path / "missing.yaml")

    def test_one_line_inline_document(self):
        assert parse_plan("{components: [{name: only}]}").components[0].name == "only"

    def test_one_line_string_is_a_path(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        with pytest.raises(PlanParseError, match="Cannot read plan file"):
            load_plan("{components: []}")

    def test_parse_error_names_origin(self):
        with pytest.raises(PlanParseError, match="from-env"):
            parse_plan("- a\n", origin="from-env")

    def test_malformed_yaml(self):
        with pytest.raises(PlanParseError, match="Malformed YAML"):
            parse_plan("components:\n  - name: [unclosed\n")

    def test_empty_document(self, tmp_path):
        plan_file = tmp_path / "empty.yaml"
        plan_file.write_text("")
        with pytest.raises(PlanParseError, match="empty"):
            load_plan(plan_file)

    def test_non_mapping_root(self):
        with pytest.raises(PlanParseError, match="must be a mapping"):
            parse_plan("- a\n- b\n")

    def test_duplicate_names(self):
        with pytest.raises(PlanParseError, match="Duplicate component name"):
            parse_plan(DUPLICATE_PLAN_YAML)

    def test_multiline_override_string_is_folded(self, sample_plan):
        """Test that a plain scalar wrapped across lines stays one argument string."""
        text = PLAN_YAML.replace(
            '"--set metrics.serviceMonitor.enabled=false --set manager.extraArgs.use-inv-stub=true"',
            '"--set a=1\n        --set b=2"',
        )
        release = parse_plan(text).component("cluster-api-provider-intel").helm_repo[0]
        assert release.overrides == "--set a=1 --set b=2"


class TestLoadOverride:
    """Tests for load_override and override_from_env."""

    def test_partial_components_allowed(self):
        override = load_override(OVERRIDE_JSON)
        component = override.components[0]
        assert component.name == "cluster-manager"
        assert component.git_repo.version == "0a1b2c3d4e5f"
        assert component.skip_local_build is False
        assert component.skip_component is None

    def test_malformed_json(self):
        with pytest.raises(PlanParseError, match="Malformed override JSON"):
            load_override("{not json")

    def test_schema_violation(self):
        with pytest.raises(PlanParseError):
            load_override('{"components": [{"skip-component": true}]}')

    def test_path_like_name_rejected(self):
        with pytest.raises(PlanParseError, match="single path segment"):
            load_override('{"components": [{"name": "/home/user"}]}')

    def test_from_env_unset(self, clean_env):
        assert override_from_env() is None

    def test_from_env_blank(self, clean_env):
        clean_env.setenv("ADDITIONAL_CONFIG", "   ")
        assert override_from_env() is None

    def test_from_env(self, clean_env):
        clean_env.setenv("ADDITIONAL_CONFIG", OVERRIDE_JSON)
        override = override_from_env()
        assert override.components[0].name == "cluster-manager"


class TestMergeComponent:
    """Tests for merge_component."""

    def test_non_empty_fields_replace(self):
        base = ComponentSpec.model_validate(
            {"name": "c", "make-targets": ["a"], "make-directory": "base/"}
        )
        override = ComponentSpec.model_validate({"name": "c", "make-targets": ["b"]})
        merged = merge_component(base, override)
        assert merged.make_targets == ["b"]
        assert merged.make_directory == "base/"

    def test_helm_releases_appended(self):
        base = ComponentSpec.model_validate(
            {"name": "c", "helm-repo": [{"release-name": "one", "package": "p1"}]}
        )
        override = ComponentSpec.model_validate(
            {"name": "c", "helm-repo": [{"release-name": "two", "package": "p2"}]}
        )
        merged = merge_component(base, override)
        assert [r.release_name for r in merged.helm_repo] == ["one", "two"]

    def test_git_fields_merge_independently(self):
        base = ComponentSpec.model_validate(
            {"name": "c", "git-repo": {"url": "https://base", "version": "main"}}
        )
        override = ComponentSpec.model_validate(
            {"name": "c", "git-repo": {"version": "feature"}}
        )
        merged = merge_component(base, override)
        assert merged.git_repo.url == "https://base"
        assert merged.git_repo.version == "feature"

    def test_omitted_boolean_keeps_base(self):
        base = ComponentSpec.model_validate(
            {"name": "c", "skip-component": True, "skip-local-build": True}
        )
        merged = merge_component(base, ComponentSpec(name="c"))
        assert merged.skip_component is True
        assert merged.skip_local_build is True

    def test_explicit_false_replaces_base(self):
        base = ComponentSpec.model_validate({"name": "c", "skip-local-build": True})
        override = ComponentSpec.model_validate(
            {"name": "c", "skip-local-build": False}
        )
        assert merge_component(base, override).skip_local_build is False

    def test_inputs_not_mutated(self):
        base = ComponentSpec.model_validate(
            {"name": "c", "helm-repo": [{"release-name": "one", "package": "p"}]}
        )
        override = ComponentSpec.model_validate(
            {"name": "c", "helm-repo": [{"release-name": "two", "package": "p"}]}
        )
        merge_component(base, override)
        assert len(base.helm_repo) == 1
        assert len(override.helm_repo) == 1


class TestMergePlans:
    """Tests for merge_plans."""

    def test_empty_override_is_identity(self, sample_plan):
        assert merge_plans(sample_plan, BootstrapPlan()) == sample_plan

    def test_matching_component_merged(self, sample_plan):
        merged = merge_plans(sample_plan, load_override(OVERRIDE_JSON))
        manager = merged.component("cluster-manager")
        assert manager.git_repo.version == "0a1b2c3d4e5f"
        assert manager.git_repo.url == "https://github.com/example/cluster-manager.git"
        assert manager.uses_package_manager is False
        assert manager.make_targets == ["helm-install"]

    def test_order_preserved(self, sample_plan):
        merged = merge_plans(sample_plan, load_override(OVERRIDE_JSON))
        assert [c.name for c in merged.components] == [
            c.name for c in sample_plan.components
        ]

    def test_unknown_components_appended_in_order(self, sample_plan):
        override = BootstrapPlan.model_validate(
            {"components": [{"name": "extra-b"}, {"name": "extra-a"}]}
        )
        merged = merge_plans(sample_plan, override)
        assert [c.name for c in merged.components][-2:] == ["extra-b", "extra-a"]

    def test_cluster_config_replaced_when_set(self, sample_plan):
        override = BootstrapPlan.model_validate({"kind-cluster-config": "other.yaml"})
        assert merge_plans(sample_plan, override).kind_cluster_config == "other.yaml"

    def test_base_not_mutated(self, sample_plan):
        before = sample_plan.model_copy(deep=True)
        merge_plans(sample_plan, load_override(OVERRIDE_JSON))
        assert sample_plan == before
