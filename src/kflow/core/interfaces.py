"""Capabilities supplied by the host layer (secret storage and interactive input)."""

from abc import ABC, abstractmethod
from collections.abc import Mapping, Sequence


class SecretStore(ABC):
    """Abstract key/value store for session secrets."""

    @abstractmethod
    async def get(self, key: str) -> str | None:
        """Return the stored value, or None if the key is absent."""
        pass

    @abstractmethod
    async def store(self, key: str, value: str) -> None:
        """Store a value under a key, replacing any previous value."""
        pass

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Delete a key. Deleting a missing key is not an error."""
        pass


class InteractiveInput(ABC):
    """Abstract source of user answers.

    Every method returns None when the user dismisses the prompt; callers treat
    that as an abort without side effects.
    """

    @abstractmethod
    async def prompt_text(self, label: str, default: str | None = None) -> str | None:
        pass

    @abstractmethod
    async def prompt_secret(self, label: str) -> str | None:
        pass

    @abstractmethod
    async def select_one(self, options: Sequence[str]) -> str | None:
        pass


class InMemorySecretStore(SecretStore):
    """Secret store kept in a dict, for tests and ephemeral sessions."""

    def __init__(self, initial: Mapping[str, str] | None = None) -> None:
        self._data: dict[str, str] = dict(initial or {})

    async def get(self, key: str) -> str | None:
        return self._data.get(key)

    async def store(self, key: str, value: str) -> None:
        self._data[key] = value

    async def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self) -> list[str]:
        return list(self._data)


class PresetInput(InteractiveInput):
    """Answers prompts from a prepared mapping of label -> answer.

    Labels missing from the mapping fall back to the prompt default, so an empty
    mapping accepts every default. A label mapped to None is a cancellation.
    Selection picks ``selection`` when given and present, else the first option.
    """

    def __init__(
        self,
        answers: Mapping[str, str | None] | None = None,
        selection: str | None = None,
    ) -> None:
        self.answers = dict(answers or {})
        self.selection = selection
        self.asked: list[str] = []

    async def prompt_text(self, label: str, default: str | None = None) -> str | None:
        self.asked.append(label)
        if label in self.answers:
            return self.answers[label]
        return default if default is not None else ""

    async def prompt_secret(self, label: str) -> str | None:
        self.asked.append(label)
        return self.answers.get(label)

    async def select_one(self, options: Sequence[str]) -> str | None:
        if not options:
            return None
        if self.selection is None:
            return options[0]
        return self.selection if self.selection in options else None
