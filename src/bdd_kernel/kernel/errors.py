from __future__ import annotations


class KernelError(Exception):
    # Root of every error raised by the kernel itself.
    pass


class ConfigurationError(KernelError):
    # Configuration-time errors halt the whole run before any scenario executes.
    pass


class DuplicatePatternError(ConfigurationError):
    def __init__(self, pattern: str, arity: int, priority: int) -> None:
        super().__init__(
            f"Step pattern '{pattern}' (arity {arity}, priority {priority}) is already registered"
        )
        self.pattern = pattern
        self.arity = arity
        self.priority = priority


class InvalidDefinitionError(ConfigurationError):
    # Raised when a step/hook callable cannot accept what the kernel will pass to it.
    pass


class RegistryFrozenError(ConfigurationError):
    pass


class CompositionError(ConfigurationError):
    # partial: root node of whatever was constructed before the failure, if anything was.
    def __init__(self, message: str, partial: object | None = None) -> None:
        super().__init__(message)
        self.partial = partial


class UnknownSubcontextError(ConfigurationError):
    def __init__(self, alias: str) -> None:
        super().__init__(f"Unknown subcontext alias: {alias}")
        self.alias = alias


class AmbiguousCapabilityError(ConfigurationError):
    def __init__(self, capability: object, aliases: list[str]) -> None:
        super().__init__(f"Capability {capability!r} matches several contexts: {aliases}")
        self.capability = capability
        self.aliases = aliases


class NotFoundError(ConfigurationError):
    def __init__(self, capability: object) -> None:
        super().__init__(f"No context provides capability {capability!r}")
        self.capability = capability


class SetupError(KernelError):
    # Context composition failed for one scenario; fatal to that scenario only.
    def __init__(self, scenario: str, cause: Exception) -> None:
        super().__init__(f"Failed to compose contexts for scenario '{scenario}': {cause}")
        self.scenario = scenario
        self.cause = cause


class AmbiguousMatchError(KernelError):
    def __init__(self, text: str, patterns: list[str]) -> None:
        super().__init__(f"Step '{text}' matches several definitions: {patterns}")
        self.text = text
        self.patterns = patterns


class StepFailure(KernelError):
    # Wraps the exception raised by a user callable; contained within its scenario.
    def __init__(self, where: str, cause: BaseException) -> None:
        super().__init__(f"{where} raised {type(cause).__name__}: {cause}")
        self.where = where
        self.cause = cause


class PendingStep(Exception):
    # Raised by user step code to mark an implementation as not finished yet.
    pass


class ArgumentCoercionError(KernelError):
    def __init__(self, pattern: str, value: str, type_name: str, cause: Exception | None = None) -> None:
        detail = f": {cause}" if cause is not None else ""
        super().__init__(f"Cannot coerce '{value}' to {type_name} for step '{pattern}'{detail}")
        self.pattern = pattern
        self.value = value
        self.type_name = type_name
