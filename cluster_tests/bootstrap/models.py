"""Pydantic models for the bootstrap plan document.

The plan file (``.test-dependencies.yaml``) and the JSON override document
share one shape. Keys are kebab-case on the wire; snake_case is accepted
too so plans can be built from Python.
"""

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class _PlanModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class PackageRelease(_PlanModel):
    """One Helm release to install for a component."""

    url: str = Field("", description="Chart registry URL (e.g. oci://...)")
    release_name: str = Field("", alias="release-name")
    package: str = Field("", description="Chart reference inside the registry")
    namespace: str = Field("", description="Target namespace")
    version: str = Field("", description="Chart version, empty for latest")
    use_devel: bool = Field(False, alias="use-devel")
    overrides: str = Field("", description="Extra helm arguments")

    @field_validator("version", "overrides", "namespace", mode="before")
    @classmethod
    def none_to_empty(cls, v):
        return "" if v is None else v

    @property
    def chart_ref(self) -> str:
        return f"{self.url}/{self.package}"

    @property
    def is_placeholder(self) -> bool:
        """True for entries that only hold empty fields."""
        return not self.release_name and not self.package


class SourceRepo(_PlanModel):
    """Git repository a component is built from."""

    url: str = ""
    version: str = Field("", description="Branch, tag or commit SHA")

    @field_validator("version", mode="before")
    @classmethod
    def coerce_version(cls, v):
        # YAML reads unquoted SHAs like 1234567 as integers
        return "" if v is None else str(v)


class ComponentSpec(_PlanModel):
    """One entry in the installation plan.

    ``skip_component`` and ``skip_local_build`` are tri-state: ``None`` means
    the document did not mention the flag, which matters when merging an
    override into the base plan.
    """

    name: str = Field(..., min_length=1)
    skip_component: Optional[bool] = Field(None, alias="skip-component")
    skip_local_build: Optional[bool] = Field(None, alias="skip-local-build")
    pre_install_commands: List[str] = Field(
        default_factory=list, alias="pre-install-commands"
    )
    helm_repo: List[PackageRelease] = Field(default_factory=list, alias="helm-repo")
    git_repo: SourceRepo = Field(default_factory=SourceRepo, alias="git-repo")
    make_directory: str = Field("", alias="make-directory")
    make_variables: List[str] = Field(default_factory=list, alias="make-variables")
    make_targets: List[str] = Field(default_factory=list, alias="make-targets")
    post_install_commands: List[str] = Field(
        default_factory=list, alias="post-install-commands"
    )

    @field_validator("name")
    @classmethod
    def single_path_segment(cls, v):
        # The name becomes a directory under the workspace
        if v in (".", "..") or "/" in v or "\\" in v:
            raise ValueError(f"Component name must be a single path segment: {v!r}")
        return v

    @field_validator(
        "pre_install_commands",
        "helm_repo",
        "make_variables",
        "make_targets",
        "post_install_commands",
        mode="before",
    )
    @classmethod
    def none_to_list(cls, v):
        return [] if v is None else v

    @field_validator("make_directory", mode="before")
    @classmethod
    def none_to_str(cls, v):
        return "" if v is None else v

    @field_validator("git_repo", mode="before")
    @classmethod
    def none_to_repo(cls, v):
        return {} if v is None else v

    @property
    def skipped(self) -> bool:
        return bool(self.skip_component)

    @property
    def uses_package_manager(self) -> bool:
        """Install from helm releases instead of building from source."""
        return bool(self.skip_local_build)


class BootstrapPlan(_PlanModel):
    """Root plan document: kind topology plus ordered components."""

    kind_cluster_config: str = Field("", alias="kind-cluster-config")
    components: List[ComponentSpec] = Field(default_factory=list)

    @field_validator("components", mode="before")
    @classmethod
    def none_to_list(cls, v):
        return [] if v is None else v

    @field_validator("components")
    @classmethod
    def unique_names(cls, components: List[ComponentSpec]) -> List[ComponentSpec]:
        seen = set()
        for component in components:
            if component.name in seen:
                raise ValueError(f"Duplicate component name: {component.name}")
            seen.add(component.name)
        return components

    def component(self, name: str) -> Optional[ComponentSpec]:
        """Look up a component by name."""
        for component in self.components:
            if component.name == name:
                return component
        return None

    def to_document(self) -> dict:
        """Dump using the kebab-case keys of the plan file."""
        return self.model_dump(by_alias=True)
