"""In-process stand-ins for external collaborators."""

import asyncio

from src.modules.usage.provider import GenerationResult


class FakeGenerationProvider:
    """
    Scriptable provider.

    Each call pops the next scripted behaviour: an exception instance is
    raised, anything else is returned as-is. With nothing scripted it
    returns ``count`` deterministic output URLs.
    """

    def __init__(self, delay: float = 0.0):
        self.delay = delay
        self.calls: list[tuple[str, int]] = []
        self._script: list = []

    def will_return(self, *outputs: str) -> None:
        self._script.append(GenerationResult(outputs=list(outputs)))

    def will_raise(self, error: Exception) -> None:
        self._script.append(error)

    async def generate(self, prompt: str, count: int) -> GenerationResult:
        self.calls.append((prompt, count))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self._script:
            behaviour = self._script.pop(0)
            if isinstance(behaviour, Exception):
                raise behaviour
            return behaviour
        n = len(self.calls)
        return GenerationResult(
            outputs=[f"https://cdn.example.com/{n}-{i}.png" for i in range(count)]
        )
