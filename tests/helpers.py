from game import Die, GameUI, SecureEntropySource

CHI_SQUARE_CRITICAL = {
    # Critical values at p = 0.0001, keyed by degrees of freedom.
    1: 15.137,
    2: 18.421,
    5: 25.745,
    6: 27.856,
    7: 29.878,
    9: 33.720,
}


def chi_square(counts: list[int], trials: int) -> float:
    expected = trials / len(counts)
    return sum((c - expected) ** 2 / expected for c in counts)


def classic_dice() -> list[Die]:
    return [Die((2, 2, 4, 4, 9, 9)), Die((6, 8, 1, 1, 8, 6)), Die((7, 5, 3, 7, 5, 3))]


class RecordingUI(GameUI):
    """Console UI fed from a list of answers, recording every artifact it shows."""

    def __init__(self, inputs):
        self.inputs = list(inputs)
        self.lines = []
        self.events = []
        super().__init__(input_func=self._next_input, output_func=self.lines.append)

    def _next_input(self, prompt: str) -> str:
        if not self.inputs:
            raise AssertionError(f"no scripted answer left for prompt {prompt!r}")
        return self.inputs.pop(0)

    def announce_range(self, range_size):
        self.events.append(("range", range_size))
        super().announce_range(range_size)

    def display_hmac(self, hmac_hex):
        self.events.append(("hmac", hmac_hex))
        super().display_hmac(hmac_hex)

    def prompt_for_choice(self, prompt, options, kind, allow_help=True):
        choice = super().prompt_for_choice(prompt, options, kind, allow_help)
        self.events.append(("choice", choice))
        return choice

    def display_reveal(self, commitment, result):
        self.events.append(("reveal", commitment, result))
        super().display_reveal(commitment, result)

    def kinds(self) -> list[str]:
        return [event[0] for event in self.events]

    def reveals(self) -> list[tuple]:
        return [event[1:] for event in self.events if event[0] == "reveal"]


class ScriptedEntropySource(SecureEntropySource):
    """Real keys, but scripted computer numbers and die picks."""

    def __init__(self, values, picks=()):
        super().__init__()
        self.values = list(values)
        self.picks = list(picks)

    def uniform_in_range(self, range_size):
        value = self.values.pop(0)
        assert 0 <= value < range_size
        return value

    def choice(self, seq):
        return seq[self.picks.pop(0)]


class ByteQueue:
    """Stands in for secrets.token_bytes, handing out queued chunks."""

    def __init__(self, chunks):
        self.chunks = list(chunks)
        self.requests = []

    def __call__(self, count: int) -> bytes:
        self.requests.append(count)
        return self.chunks.pop(0)
