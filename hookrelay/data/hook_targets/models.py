"""Pydantic models for hook target definitions."""

from typing import Any

from pydantic import BaseModel, Field, model_validator

from hookrelay.models.hooks import HookFamily, TargetSpec

# Argument roles each family cannot work without
REQUIRED_ROLES: dict[HookFamily, tuple[str, ...]] = {
    HookFamily.TRUST_VALIDATION: (),
    HookFamily.SCRIPT_EVALUATION: ("content",),
    HookFamily.CONTENT_LOAD: ("content",),
    HookFamily.NETWORK_TASK: ("request", "completion"),
}


class HookTarget(BaseModel):
    """A native entry point the agent should intercept.

    Argument roles map to a parameter name or a positional index of the
    target (``self`` is index 0 for methods).
    """

    id: str = Field(
        ...,
        description="Unique hook name, also used as the event source",
        pattern=r"^[a-z][a-z0-9_]*$",
    )
    family: HookFamily = Field(..., description="Hook family, which fixes the policy")
    module: str = Field(..., description="Module that must already be loaded")
    symbol: str | None = Field(None, description="Dotted name inside the module")
    pattern: str | None = Field(
        None,
        description="Regex over qualified names in the module; must match once",
    )
    description: str = Field("", description="What this entry point does")
    mechanism: str | None = Field(
        None,
        description="Validation mechanism name reported in cert_bypass events",
    )
    arguments: dict[str, str | int] = Field(
        default_factory=dict,
        description="Role -> parameter name or positional index",
    )
    forced_result: Any = Field(
        True,
        description="Value returned instead of calling a trust validator",
    )
    completion_arguments: list[str] = Field(
        default_factory=lambda: ["data", "response", "error"],
        description="Names for the completion callback's positional arguments",
    )

    @model_validator(mode="after")
    def _check_target(self) -> "HookTarget":
        if (self.symbol is None) == (self.pattern is None):
            raise ValueError(f"{self.id}: exactly one of symbol or pattern is required")
        missing = [role for role in REQUIRED_ROLES[self.family] if role not in self.arguments]
        if missing:
            raise ValueError(
                f"{self.id}: {self.family.value} targets need argument roles {missing}"
            )
        return self

    def spec(self) -> TargetSpec:
        return TargetSpec(module=self.module, symbol=self.symbol, pattern=self.pattern)


class HookTargetsFile(BaseModel):
    """Schema of a hook target YAML file."""

    targets: list[HookTarget] = Field(default_factory=list)
