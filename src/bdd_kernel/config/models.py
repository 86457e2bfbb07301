from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

# Config models map YAML sections to typed structures.


class ExecutionConfig(BaseModel):
    # Executor policies; every ambiguity in step handling is an explicit switch here.
    model_config = ConfigDict(extra="forbid")
    ambiguity: Literal["error", "first"] = "error"
    undefined: Literal["pending", "failed"] = "pending"
    after_undefined: Literal["skip_rest", "continue"] = "skip_rest"
    after_failure: Literal["skip_rest", "continue"] = "skip_rest"
    auto_coerce: bool = True
    strict: bool = False
    workers: int = Field(default=1, ge=1)
    capture_stack: bool = True


class ContextDecl(BaseModel):
    # Context declaration: "package.module:ClassName", alias, opaque constructor params, nested subcontexts.
    model_config = ConfigDict(extra="forbid", populate_by_name=True)
    class_path: str = Field(alias="class")
    alias: str = "main"
    params: dict[str, Any] = Field(default_factory=dict)
    capabilities: list[str] = Field(default_factory=list)
    subcontexts: list[ContextDecl] = Field(default_factory=list)

    @field_validator("class_path")
    @classmethod
    def _require_module_and_name(cls, value: str) -> str:
        module, sep, name = value.partition(":")
        if not sep or not module or not name:
            raise ValueError("class must look like 'package.module:ClassName'")
        return value

    @field_validator("alias")
    @classmethod
    def _require_alias(cls, value: str) -> str:
        if not value:
            raise ValueError("alias must be a non-empty string")
        return value


class LoggingConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")
    sink: Literal["none", "stdout", "jsonl"] = "none"
    path: str | None = None
    level: Literal["debug", "info", "warning", "error"] = "info"

    @model_validator(mode="after")
    def _require_path(self) -> LoggingConfig:
        # For jsonl sink, a path is required to avoid silent defaults.
        if self.sink == "jsonl" and not self.path:
            raise ValueError("logging.path is required when sink is 'jsonl'")
        return self


class ResultsConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")
    sink: Literal["none", "memory", "stdout", "jsonl"] = "none"
    path: str | None = None
    include_phases: bool = True
    # jsonl only: "batch" buffers flush_every_n records per write, "line" flushes every flush_every_n records.
    write_mode: Literal["line", "batch"] = "line"
    flush_every_n: int = Field(default=1, ge=1)
    fsync_every_n: int | None = Field(default=None, ge=1)

    @model_validator(mode="after")
    def _require_path(self) -> ResultsConfig:
        if self.sink == "jsonl" and not self.path:
            raise ValueError("results.path is required when sink is 'jsonl'")
        return self


class RunnerConfig(BaseModel):
    # Top-level runner configuration.
    model_config = ConfigDict(extra="forbid")
    execution: ExecutionConfig = Field(default_factory=ExecutionConfig)
    contexts: ContextDecl | None = None
    step_modules: list[str] = Field(default_factory=list)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    results: ResultsConfig = Field(default_factory=ResultsConfig)

    @model_validator(mode="after")
    def _unique_aliases(self) -> RunnerConfig:
        # Alias collisions are reported with the config, before anything is imported.
        if self.contexts is None:
            return self
        seen: set[str] = set()
        stack = [self.contexts]
        while stack:
            decl = stack.pop()
            if decl.alias in seen:
                raise ValueError(f"contexts: duplicate subcontext alias '{decl.alias}'")
            seen.add(decl.alias)
            stack.extend(decl.subcontexts)
        return self
