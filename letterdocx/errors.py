class SynthesisError(RuntimeError):
    """Base class for every failure raised by the letter synthesis engine."""


class CorruptPackage(SynthesisError):
    """The template container is not a readable zip archive or a part is not well-formed XML."""


class MissingRequiredPart(SynthesisError):
    def __init__(self, part: str):
        super().__init__(f"required part missing from template: {part}")
        self.part = part


class PatternNotFound(SynthesisError):
    """An anchor the template is expected to carry could not be located.

    Non-fatal: the engine logs it and the affected stage becomes a no-op.
    """

    def __init__(self, anchor: str, part: str):
        super().__init__(f"anchor {anchor!r} not found in {part}")
        self.anchor = anchor
        self.part = part


class AssemblyFailure(SynthesisError):
    """Repacking the synthesized parts into a container failed."""


class InvalidForm(SynthesisError):
    """The letter form cannot be synthesized (e.g. a ragged table)."""
