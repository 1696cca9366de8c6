import hmac
import logging
import os
import secrets
import sys
from dataclasses import dataclass, replace
from enum import Enum
from typing import Callable, Literal, Optional, Sequence, Union

from tabulate import tabulate

logger = logging.getLogger("dice_game")

EXAMPLE_DICE = "2,2,4,4,9,9 6,8,1,1,8,6 7,5,3,7,5,3"
MIN_KEY_BYTES = 32

# ==============================================================================
# 1. Error Handling Classes
# ==============================================================================

class ConfigurationError(Exception):
    """
    Raised for unusable dice arguments or environment settings.
    Provides a formatted message including an example of correct usage.
    """
    _invocation_command = "python"

    @staticmethod
    def set_invocation_command(command: str):
        """Sets the command used to run the script (e.g., 'python' or 'py')."""
        ConfigurationError._invocation_command = command

    def __init__(self, message: str, heading: str = "Argument Error"):
        self.message = message
        self.heading = heading
        super().__init__(self.message)

    def __str__(self) -> str:
        script_name = sys.argv[0] if sys.argv and sys.argv[0] else "game.py"
        example = f"{ConfigurationError._invocation_command} {script_name} {EXAMPLE_DICE}"
        return f"\n{self.heading}: {self.message}\n\nExample usage:\n{example}\n"

    @classmethod
    def not_enough_dice(cls, count: int, minimum: int) -> "ConfigurationError":
        if count == 0:
            found = "No dice were specified."
        elif count == 1:
            found = "Only 1 die was specified."
        else:
            found = f"Only {count} dice were specified."
        return cls(f"{found} Please specify at least {minimum} dice.")

    @classmethod
    def non_integer_face(cls, position: int, arg: str, face: str) -> "ConfigurationError":
        return cls(
            f"Die #{position} '{arg}' has a non-integer face '{face}'. "
            f"All dice faces must be integer values."
        )

    @classmethod
    def wrong_face_count(cls, position: int, arg: str, count: int, expected: int) -> "ConfigurationError":
        return cls(
            f"Die #{position} '{arg}' has {count} faces, "
            f"but every die must have exactly {expected} faces."
        )


class EntropyUnavailable(Exception):
    """The operating system could not supply secure random bytes."""


class InvalidHumanChoice(ValueError):
    """Input that does not name an entry of the current menu."""


class RoundCancelled(Exception):
    """The user chose to exit while a round was waiting for their input."""


class ProtocolOrderError(RuntimeError):
    """A fair-round step was attempted out of its required order."""

# ==============================================================================
# 2. Configuration
# ==============================================================================

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass(frozen=True)
class GameConfig:
    """
    Rule constants and runtime settings for one process.
    Fields:
        faces_per_die (int): Faces every die must have.
        min_dice (int): Fewest dice the game can be started with.
        key_bytes (int): Length of each HMAC secret key.
        hash_name (str): hashlib name of the HMAC digest.
        max_tie_rerolls (int): Re-rolls allowed after tied throws before a draw.
        log_level (str): Level for the dice_game logger.
    """
    faces_per_die: int = 6
    min_dice: int = 3
    key_bytes: int = MIN_KEY_BYTES
    hash_name: str = "sha3_256"
    max_tie_rerolls: int = 5
    log_level: str = "WARNING"

    def __post_init__(self):
        if self.key_bytes < MIN_KEY_BYTES:
            raise ConfigurationError(
                f"Secret keys must be at least {MIN_KEY_BYTES} bytes, got {self.key_bytes}.",
                heading="Configuration Error",
            )
        if self.max_tie_rerolls < 0:
            raise ConfigurationError(
                f"The tie re-roll limit cannot be negative, got {self.max_tie_rerolls}.",
                heading="Configuration Error",
            )
        if self.log_level not in LOG_LEVELS:
            raise ConfigurationError(
                f"Unknown log level '{self.log_level}'. Use one of {', '.join(LOG_LEVELS)}.",
                heading="Configuration Error",
            )
        try:
            hmac.new(b"", b"", self.hash_name)
        except (TypeError, ValueError):
            raise ConfigurationError(
                f"Hash algorithm '{self.hash_name}' cannot be used for HMAC.",
                heading="Configuration Error",
            ) from None

    @classmethod
    def from_env(cls, environ=None) -> "GameConfig":
        """Builds a config from DICE_GAME_* environment variables."""
        env = os.environ if environ is None else environ
        defaults = cls()
        return cls(
            key_bytes=_env_int(env, "DICE_GAME_KEY_BYTES", defaults.key_bytes),
            max_tie_rerolls=_env_int(env, "DICE_GAME_MAX_TIE_REROLLS", defaults.max_tie_rerolls),
            log_level=env.get("DICE_GAME_LOG_LEVEL", defaults.log_level).strip().upper(),
        )


def _env_int(env, name: str, default: int) -> int:
    raw = env.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigurationError(
            f"{name} must be an integer, got '{raw}'.", heading="Configuration Error"
        ) from None

# ==============================================================================
# 3. Data Structure for a Die
# ==============================================================================

@dataclass(frozen=True, eq=False)
class Die:
    faces: tuple[int, ...]

    def __post_init__(self):
        if not self.faces:
            raise ValueError("A die must have at least one face.")
        object.__setattr__(self, "faces", tuple(self.faces))

    def roll(self, index: int) -> int:
        return self.faces[index]

    def __str__(self) -> str:
        return ",".join(map(str, self.faces))

    def __len__(self) -> int:
        return len(self.faces)

# ==============================================================================
# 4. Command-Line Argument Parser
# ==============================================================================

class DiceParser:
    @staticmethod
    def parse(args: list[str], config: Optional[GameConfig] = None) -> list[Die]:
        config = config or GameConfig()
        if len(args) < config.min_dice:
            raise ConfigurationError.not_enough_dice(len(args), config.min_dice)
        return [
            DiceParser.parse_die(position, arg, config.faces_per_die)
            for position, arg in enumerate(args, start=1)
        ]

    @staticmethod
    def parse_die(position: int, arg: str, face_count: int) -> Die:
        faces = []
        for face in arg.split(","):
            try:
                faces.append(int(face))
            except ValueError:
                raise ConfigurationError.non_integer_face(position, arg, face) from None
        if len(faces) != face_count:
            raise ConfigurationError.wrong_face_count(position, arg, len(faces), face_count)
        return Die(tuple(faces))

# ==============================================================================
# 5. Secure Entropy Source
# ==============================================================================

class SecureEntropySource:
    """
    Secret keys and unbiased integers drawn from the OS CSPRNG.

    Integers are produced by rejection sampling over whole bytes: a draw that
    lands in the incomplete tail of the byte space is discarded and redrawn,
    so every value of the requested range is exactly equally likely.
    """

    def __init__(self, key_bytes: int = MIN_KEY_BYTES,
                 read_bytes: Optional[Callable[[int], bytes]] = None):
        if key_bytes < MIN_KEY_BYTES:
            raise ValueError(f"key_bytes must be at least {MIN_KEY_BYTES}")
        self.key_bytes = key_bytes
        self._read_bytes = read_bytes or secrets.token_bytes

    def _draw(self, count: int) -> bytes:
        try:
            data = self._read_bytes(count)
        except (OSError, NotImplementedError) as exc:
            raise EntropyUnavailable(f"secure generator could not supply {count} bytes") from exc
        if len(data) != count:
            raise EntropyUnavailable(f"secure generator returned {len(data)} of {count} bytes")
        return data

    def generate_key(self) -> bytes:
        return self._draw(self.key_bytes)

    def uniform_in_range(self, range_size: int) -> int:
        if range_size < 1:
            raise ValueError(f"range must be positive, got {range_size}")
        if range_size == 1:
            return 0
        num_bytes = max(1, ((range_size - 1).bit_length() + 7) // 8)
        space = 1 << (8 * num_bytes)
        limit = space - space % range_size
        while True:
            draw = int.from_bytes(self._draw(num_bytes), "big")
            if draw < limit:
                return draw % range_size

    def choice(self, seq: Sequence):
        if not seq:
            raise IndexError("Cannot choose from an empty sequence")
        return seq[self.uniform_in_range(len(seq))]

# ==============================================================================
# 6. Commitment Scheme
# ==============================================================================

class CommitmentScheme:
    def __init__(self, hash_name: str = "sha3_256"):
        self.hash_name = hash_name

    def commit(self, key: bytes, value: int) -> str:
        message = str(value).encode("utf-8")
        return hmac.new(key, message, self.hash_name).hexdigest().upper()

    def verify(self, key: bytes, value: int, mac: str) -> bool:
        expected = self.commit(key, value)
        return hmac.compare_digest(expected.encode("utf-8"), mac.encode("utf-8"))

# ==============================================================================
# 7. Probability Calculation & Help Table
# ==============================================================================

class ProbabilityCalculator:
    @staticmethod
    def count_outcomes(die1: Die, die2: Die) -> tuple[int, int]:
        wins = sum(1 for f1 in die1.faces for f2 in die2.faces if f1 > f2)
        losses = sum(1 for f1 in die1.faces for f2 in die2.faces if f1 < f2)
        return wins, losses

    @staticmethod
    def win_probability(die1: Die, die2: Die) -> float:
        """
        Chance that die1 beats die2 in a game where tied throws are re-rolled,
        i.e. wins divided by all decisive face pairings.
        """
        wins, losses = ProbabilityCalculator.count_outcomes(die1, die2)
        decisive = wins + losses
        return wins / decisive if decisive else 0.5


class HelpTableGenerator:
    @staticmethod
    def generate_table(all_dice: list[Die], calculator=ProbabilityCalculator) -> str:
        headers = ["User dice v PC dice >"] + [str(d) for d in all_dice]
        table_data = []
        for i, user_die in enumerate(all_dice):
            row = [str(user_die)]
            for j, pc_die in enumerate(all_dice):
                if i == j:
                    row.append("-")
                else:
                    row.append(f"{calculator.win_probability(user_die, pc_die):.4f}")
            table_data.append(row)

        intro = (
            "\n--- Win Probability Table ---\n"
            "Each cell is the probability that the User's die (row) beats the PC's die (column).\n"
            "Tied throws are re-rolled, so ties are left out: each cell is wins / (wins + losses).\n"
        )
        return intro + tabulate(table_data, headers=headers, tablefmt="grid", disable_numparse=True)

# ==============================================================================
# 8. Menu Choices & Console User Interface
# ==============================================================================

@dataclass(frozen=True)
class DieChoice:
    index: int


@dataclass(frozen=True)
class RangeChoice:
    value: int


@dataclass(frozen=True)
class Exit:
    pass


@dataclass(frozen=True)
class Help:
    pass


Choice = Union[DieChoice, RangeChoice, Exit, Help]


class ChoiceKind(Enum):
    DIE = "die"
    RANGE = "range"


def parse_choice(raw: str, option_count: int, kind: ChoiceKind, allow_help: bool = True) -> Choice:
    choice = raw.strip().lower()
    if choice == "x":
        return Exit()
    if choice == "?":
        if allow_help:
            return Help()
        raise InvalidHumanChoice("help is not available here.")
    if choice.isdecimal():
        digits = choice.lstrip("0") or "0"
        if len(digits) > len(str(option_count)):
            raise InvalidHumanChoice(f"that number is not between 0 and {option_count - 1}.")
        index = int(digits)
        if index < option_count:
            return DieChoice(index) if kind is ChoiceKind.DIE else RangeChoice(index)
        raise InvalidHumanChoice(f"{index} is not between 0 and {option_count - 1}.")
    raise InvalidHumanChoice(f"'{raw.strip()}' is not a menu option.")


class GameUI:
    def __init__(self, input_func: Optional[Callable[[str], str]] = None,
                 output_func: Optional[Callable[[str], None]] = None):
        self._input = input_func or input
        self._output = output_func or print

    def display_message(self, text: str):
        self._output(text)

    def announce_range(self, range_size: int):
        self._output(f"I selected a random value in the range 0..{range_size - 1}.")

    def display_hmac(self, hmac_hex: str):
        self._output(f"(HMAC={hmac_hex}).")

    def display_reveal(self, commitment: "Commitment", result: "RoundResult"):
        self._output(
            f"My number is {commitment.value} (KEY={commitment.key_hex}). "
            f"The fair number generation result is "
            f"({result.computer_value} + {result.human_value}) mod {result.range_size} = {result.combined}."
        )

    def prompt_for_choice(self, prompt: str, options: list[str], kind: ChoiceKind,
                          allow_help: bool = True) -> Choice:
        while True:
            self._output(f"\n{prompt}")
            for i, option in enumerate(options):
                self._output(f" {i} - {option}")
            self._output(" X - exit")
            if allow_help:
                self._output(" ? - help")

            raw = self._input("Your selection: ")
            try:
                return parse_choice(raw, len(options), kind, allow_help)
            except InvalidHumanChoice as exc:
                logger.debug("Rejected menu input %r: %s", raw, exc)
                self._output(f"Invalid choice: {exc} Please enter a listed number, '?', or 'X'.")

    def confirm(self, question: str) -> bool:
        return self._input(f"{question} (y/n): ").strip().lower() == "y"

# ==============================================================================
# 9. Provably Fair Random Number Generation
# ==============================================================================

@dataclass(frozen=True)
class Commitment:
    secret_key: bytes
    value: int
    mac: str

    @property
    def key_hex(self) -> str:
        return self.secret_key.hex().upper()


@dataclass(frozen=True)
class RoundResult:
    computer_value: int
    human_value: int
    range_size: int

    @property
    def combined(self) -> int:
        return (self.computer_value + self.human_value) % self.range_size


class ProtocolState(Enum):
    READY = "ready"
    COMMITTED = "committed"
    HUMAN_CHOSEN = "human_chosen"
    REVEALED = "revealed"
    CANCELLED = "cancelled"


class FairRangeProtocol:
    """
    One commit-reveal draw in [0, range_size).

    The computer commits to its value by showing only the HMAC, then takes the
    user's value, and only then reveals its value together with the key so the
    user can recompute the HMAC. Each step is allowed exactly once and only in
    that order; a key is generated per instance and never leaves it before the
    reveal.
    """

    def __init__(self, range_size: int, entropy: SecureEntropySource, scheme: CommitmentScheme):
        if range_size < 1:
            raise ValueError(f"range must be positive, got {range_size}")
        self.range_size = range_size
        self.entropy = entropy
        self.scheme = scheme
        self.state = ProtocolState.READY
        self._commitment: Optional[Commitment] = None
        self._human_value: Optional[int] = None

    def _expect(self, *allowed: ProtocolState, action: str):
        if self.state not in allowed:
            raise ProtocolOrderError(f"cannot {action} while {self.state.value}")

    def commit(self) -> str:
        self._expect(ProtocolState.READY, action="commit")
        key = self.entropy.generate_key()
        value = self.entropy.uniform_in_range(self.range_size)
        self._commitment = Commitment(key, value, self.scheme.commit(key, value))
        self.state = ProtocolState.COMMITTED
        logger.debug("Committed to a value in 0..%d (HMAC=%s)", self.range_size - 1, self._commitment.mac)
        return self._commitment.mac

    def accept(self, human_value: int):
        self._expect(ProtocolState.COMMITTED, action="accept a choice")
        if not 0 <= human_value < self.range_size:
            raise InvalidHumanChoice(f"{human_value} is not between 0 and {self.range_size - 1}.")
        self._human_value = human_value
        self.state = ProtocolState.HUMAN_CHOSEN

    def reveal(self) -> tuple[Commitment, RoundResult]:
        self._expect(ProtocolState.HUMAN_CHOSEN, action="reveal")
        commitment, self._commitment = self._commitment, None
        result = RoundResult(commitment.value, self._human_value, self.range_size)
        self.state = ProtocolState.REVEALED
        logger.debug("Revealed %d for HMAC=%s, combined result %d", commitment.value, commitment.mac, result.combined)
        return commitment, result

    def cancel(self):
        self._expect(ProtocolState.READY, ProtocolState.COMMITTED, ProtocolState.HUMAN_CHOSEN, action="cancel")
        self._commitment = None
        self._human_value = None
        self.state = ProtocolState.CANCELLED
        logger.info("Round over 0..%d cancelled before the key was revealed", self.range_size - 1)

    def run(self, ui: GameUI, prompt: str, on_help: Optional[Callable[[], None]] = None) -> RoundResult:
        mac = self.commit()
        ui.announce_range(self.range_size)
        ui.display_hmac(mac)

        options = [str(i) for i in range(self.range_size)]
        while True:
            choice = ui.prompt_for_choice(prompt, options, ChoiceKind.RANGE, allow_help=on_help is not None)
            if isinstance(choice, Help):
                on_help()
            elif isinstance(choice, Exit):
                self.cancel()
                raise RoundCancelled("the user left during a fair round")
            elif isinstance(choice, RangeChoice):
                self.accept(choice.value)
                break
            else:
                raise TypeError(f"unexpected choice for a number prompt: {choice!r}")

        commitment, result = self.reveal()
        ui.display_reveal(commitment, result)
        return result

# ==============================================================================
# 10. Game State & Coordinator
# ==============================================================================

class GamePhase(Enum):
    DETERMINING_FIRST_MOVE = "determining_first_move"
    SELECTING_DICE = "selecting_dice"
    ROLLING_COMPUTER = "rolling_computer"
    ROLLING_HUMAN = "rolling_human"
    RESOLVED = "resolved"
    CANCELLED = "cancelled"


Outcome = Literal["human", "computer", "draw"]


@dataclass(frozen=True)
class GameState:
    phase: GamePhase = GamePhase.DETERMINING_FIRST_MOVE
    human_first: Optional[bool] = None
    human_die: Optional[Die] = None
    computer_die: Optional[Die] = None
    computer_throw: Optional[int] = None
    human_throw: Optional[int] = None
    outcome: Optional[Outcome] = None
    tie_rerolls: int = 0


def decide_outcome(human_throw: int, computer_throw: int) -> Outcome:
    if human_throw > computer_throw:
        return "human"
    if computer_throw > human_throw:
        return "computer"
    return "draw"


class GameCoordinator:
    def __init__(self, dice: list[Die], ui: GameUI, entropy: SecureEntropySource,
                 scheme: CommitmentScheme, config: Optional[GameConfig] = None,
                 help_gen=HelpTableGenerator, calculator=ProbabilityCalculator):
        self.all_dice = list(dice)
        self.ui = ui
        self.entropy = entropy
        self.scheme = scheme
        self.config = config or GameConfig()
        self.help_gen = help_gen
        self.calculator = calculator

    def run(self):
        self.ui.display_message("--- Welcome to the Non-Transitive Dice Game! ---")
        while True:
            state = self.play()
            if state.phase is GamePhase.CANCELLED:
                self.ui.display_message("Exiting game. Goodbye!")
                return
            if not self.ui.confirm("\nPlay another round?"):
                self.ui.display_message("Thanks for playing!")
                return

    def play(self) -> GameState:
        state = GameState()
        try:
            while state.phase is not GamePhase.RESOLVED:
                state = self.step(state)
        except RoundCancelled:
            logger.info("Game cancelled while %s", state.phase.value)
            return replace(state, phase=GamePhase.CANCELLED)
        self._announce_outcome(state)
        return state

    def step(self, state: GameState) -> GameState:
        if state.phase is GamePhase.DETERMINING_FIRST_MOVE:
            return self._determine_first_move(state)
        if state.phase is GamePhase.SELECTING_DICE:
            return self._select_dice(state)
        if state.phase is GamePhase.ROLLING_COMPUTER:
            return self._roll_computer(state)
        if state.phase is GamePhase.ROLLING_HUMAN:
            return self._roll_human(state)
        raise ProtocolOrderError(f"no transition out of {state.phase.value}")

    def _fair_round(self, range_size: int, prompt: str) -> RoundResult:
        protocol = FairRangeProtocol(range_size, self.entropy, self.scheme)
        return protocol.run(self.ui, prompt, on_help=self._show_help)

    def _determine_first_move(self, state: GameState) -> GameState:
        self.ui.display_message("\nLet's determine who makes the first move.")
        result = self._fair_round(2, "Try to guess the result.")
        # The user's number is also their guess of the combined result.
        human_first = result.human_value == result.combined
        if human_first:
            self.ui.display_message("You guessed right, so you make the first move.")
        else:
            self.ui.display_message("You guessed wrong, so I make the first move.")
        return replace(state, phase=GamePhase.SELECTING_DICE, human_first=human_first)

    def _select_dice(self, state: GameState) -> GameState:
        available = list(self.all_dice)
        if state.human_first:
            human_die = available.pop(self._ask_for_die(available))
            computer_die = self.entropy.choice(available)
            self.ui.display_message(f"I choose the [{computer_die}] dice.")
        else:
            computer_die = self.entropy.choice(available)
            available.remove(computer_die)
            self.ui.display_message(f"I choose the [{computer_die}] dice.")
            human_die = available.pop(self._ask_for_die(available))
        self.ui.display_message(f"You choose the [{human_die}] dice.")
        return replace(state, phase=GamePhase.ROLLING_COMPUTER, human_die=human_die, computer_die=computer_die)

    def _ask_for_die(self, available: list[Die]) -> int:
        options = [str(d) for d in available]
        while True:
            choice = self.ui.prompt_for_choice("Choose your dice:", options, ChoiceKind.DIE)
            if isinstance(choice, Help):
                self._show_help()
            elif isinstance(choice, Exit):
                raise RoundCancelled("the user left during dice selection")
            elif isinstance(choice, DieChoice):
                return choice.index
            else:
                raise TypeError(f"unexpected choice for a dice prompt: {choice!r}")

    def _roll(self, die: Die) -> int:
        face_count = len(die)
        result = self._fair_round(face_count, f"Add your number modulo {face_count}.")
        return die.roll(result.combined)

    def _roll_computer(self, state: GameState) -> GameState:
        self.ui.display_message("\nIt's time for my roll.")
        throw = self._roll(state.computer_die)
        self.ui.display_message(f"My roll result is {throw}.")
        return replace(state, phase=GamePhase.ROLLING_HUMAN, computer_throw=throw)

    def _roll_human(self, state: GameState) -> GameState:
        self.ui.display_message("\nIt's time for your roll.")
        throw = self._roll(state.human_die)
        self.ui.display_message(f"Your roll result is {throw}.")
        return self._resolve(replace(state, human_throw=throw))

    def _resolve(self, state: GameState) -> GameState:
        outcome = decide_outcome(state.human_throw, state.computer_throw)
        if outcome == "draw" and state.tie_rerolls < self.config.max_tie_rerolls:
            self.ui.display_message(
                f"It's a tie ({state.human_throw} = {state.computer_throw}). We both roll again."
            )
            return replace(
                state,
                phase=GamePhase.ROLLING_COMPUTER,
                computer_throw=None,
                human_throw=None,
                tie_rerolls=state.tie_rerolls + 1,
            )
        logger.info("Game resolved: %s (user %d, computer %d)", outcome, state.human_throw, state.computer_throw)
        return replace(state, phase=GamePhase.RESOLVED, outcome=outcome)

    def _announce_outcome(self, state: GameState):
        human, computer = state.human_throw, state.computer_throw
        if state.outcome == "human":
            self.ui.display_message(f"You win ({human} > {computer})!")
        elif state.outcome == "computer":
            self.ui.display_message(f"I win ({computer} > {human})!")
        else:
            self.ui.display_message(f"It's a draw ({human} = {computer}).")

    def _show_help(self):
        self.ui.display_message(self.help_gen.generate_table(self.all_dice, self.calculator))

# ==============================================================================
# 11. Main Execution Block
# ==============================================================================

def configure_logging(config: GameConfig):
    logging.basicConfig(
        level=config.log_level,
        stream=sys.stderr,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def main(argv: Optional[list[str]] = None) -> int:
    if "py.exe" in sys.executable.lower():
        ConfigurationError.set_invocation_command("py")
    else:
        ConfigurationError.set_invocation_command("python")

    args = sys.argv[1:] if argv is None else argv
    try:
        config = GameConfig.from_env()
        configure_logging(config)
        dice = DiceParser.parse(args, config)

        coordinator = GameCoordinator(
            dice,
            GameUI(),
            SecureEntropySource(config.key_bytes),
            CommitmentScheme(config.hash_name),
            config,
        )
        coordinator.run()
    except ConfigurationError as e:
        print(e, file=sys.stderr)
        return 1
    except EntropyUnavailable as e:
        logger.error("Secure randomness unavailable: %s", e)
        print(f"\nFatal: {e}. No fair round can be played.", file=sys.stderr)
        return 2
    except (KeyboardInterrupt, EOFError):
        print("\nGame interrupted. Goodbye!")
    return 0


if __name__ == "__main__":
    sys.exit(main())
