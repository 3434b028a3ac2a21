"""
FSRS6 Model Parameters

Holds the 21 model weights plus the global scheduling knobs, and repairs
invalid values instead of rejecting them: any weight that is missing, NaN
or outside its range is replaced by its default, a weight vector of the
wrong length is replaced wholesale, and out-of-range knobs fall back to
their defaults. Every repair is logged and reported in a ValidationReport.
"""
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple
import logging
import math

from fsrs_engine.core.config import Settings, settings as default_settings

logger = logging.getLogger(__name__)

FSRS6_VERSION = "6.1.1"
PARAMETER_COUNT = 21

DEFAULT_WEIGHTS: Tuple[float, ...] = (
    0.212,   # w[0]: Initial stability AGAIN
    1.2931,  # w[1]: Initial stability HARD
    2.3065,  # w[2]: Initial stability GOOD
    8.2956,  # w[3]: Initial stability EASY
    6.4133,  # w[4]: Initial difficulty / mean reversion
    0.8334,  # w[5]: Initial difficulty offset
    3.0194,  # w[6]: Difficulty change per rating step
    0.001,   # w[7]: Difficulty decay
    1.8722,  # w[8]: Recall stability growth
    0.1666,  # w[9]: Recall stability retrievability factor
    0.796,   # w[10]: Forget stability base
    1.4835,  # w[11]: Forget stability difficulty exponent
    0.0614,  # w[12]: Forget stability exponent
    0.2629,  # w[13]: Forget elapsed-time exponent
    1.6483,  # w[14]: Recall stability growth (reserved)
    0.6014,  # w[15]: Hard penalty
    1.8729,  # w[16]: Easy bonus
    0.5425,  # w[17]: Short-term memory factor
    0.0912,  # w[18]: Short-term memory decay
    0.0658,  # w[19]: Long-term stability factor
    0.1542,  # w[20]: Long-term stability growth
)

# Valid (min, max) per weight index
PARAMETER_RANGES: Tuple[Tuple[float, float], ...] = (
    (0.1, 2.0),
    (0.5, 3.0),
    (1.0, 5.0),
    (3.0, 15.0),
    (3.0, 10.0),
    (0.5, 2.0),
    (0.5, 5.0),
    (0.0, 0.5),
    (0.5, 3.0),
    (0.0, 1.0),
    (0.5, 2.0),
    (0.5, 3.0),
    (0.0, 2.0),
    (0.0, 1.0),
    (0.0, 2.0),
    (0.5, 1.5),
    (1.0, 3.0),
    (0.0, 1.0),
    (0.0, 0.5),
    (0.0, 0.5),
    (0.0, 0.5),
)

REQUEST_RETENTION_RANGE = (0.5, 0.99)
MAXIMUM_INTERVAL_RANGE = (1, 1825)  # 5 years

DEFAULT_REQUEST_RETENTION = 0.9
DEFAULT_MAXIMUM_INTERVAL = 365

_BOOL_FIELDS = ("enable_fuzz", "short_term_memory_enabled", "long_term_stability_enabled")


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and not math.isnan(value)


def clamp_weight(value: float, index: int) -> float:
    """Clamp a single weight into its valid range"""
    low, high = PARAMETER_RANGES[index]
    return max(low, min(high, value))


@dataclass(frozen=True)
class ModelParameters:
    """Immutable snapshot of the model configuration"""
    w: Tuple[float, ...] = DEFAULT_WEIGHTS
    request_retention: float = DEFAULT_REQUEST_RETENTION
    maximum_interval: int = DEFAULT_MAXIMUM_INTERVAL
    enable_fuzz: bool = True
    short_term_memory_enabled: bool = True
    long_term_stability_enabled: bool = True
    version: str = FSRS6_VERSION

    @classmethod
    def from_settings(cls, config: Optional[Settings] = None) -> "ModelParameters":
        """Build defaults from process settings (weights always default)"""
        config = config or default_settings
        return cls(
            request_retention=config.FSRS_REQUEST_RETENTION,
            maximum_interval=config.FSRS_MAXIMUM_INTERVAL,
            enable_fuzz=config.FSRS_ENABLE_FUZZ,
            short_term_memory_enabled=config.FSRS_SHORT_TERM_MEMORY_ENABLED,
            long_term_stability_enabled=config.FSRS_LONG_TERM_STABILITY_ENABLED,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "version": self.version,
            "w": list(self.w),
            "request_retention": self.request_retention,
            "maximum_interval": self.maximum_interval,
            "enable_fuzz": self.enable_fuzz,
            "short_term_memory_enabled": self.short_term_memory_enabled,
            "long_term_stability_enabled": self.long_term_stability_enabled,
        }


@dataclass(frozen=True)
class ParameterRepair:
    """One value replaced during validation"""
    field: str
    value: Any
    replacement: Any
    index: Optional[int] = None


@dataclass
class ValidationReport:
    """Outcome of ParameterStore.validate()"""
    repairs: List[ParameterRepair] = field(default_factory=list)

    @property
    def repaired(self) -> bool:
        return bool(self.repairs)


class ParameterStore:
    """
    Holds and validates the active ModelParameters.

    Defaults are injected at construction and never mutated; every
    initialize/update produces a fresh immutable snapshot.
    """

    def __init__(
        self,
        overrides: Optional[Mapping[str, Any]] = None,
        defaults: Optional[ModelParameters] = None,
    ):
        self.defaults = defaults or ModelParameters.from_settings()
        self._params = self.defaults
        self.last_report = ValidationReport()
        self.initialize(overrides)

    @property
    def parameters(self) -> ModelParameters:
        return self._params

    @property
    def weights(self) -> Tuple[float, ...]:
        return self._params.w

    def initialize(self, overrides: Optional[Mapping[str, Any]] = None) -> ModelParameters:
        """Merge overrides with the defaults and validate the result"""
        self._params = self._merge(self.defaults, overrides)
        self.last_report = self.validate()
        return self._params

    def update(self, overrides: Mapping[str, Any]) -> ModelParameters:
        """Merge overrides into the current parameters and re-validate"""
        self._params = self._merge(self._params, overrides)
        self.last_report = self.validate()
        return self._params

    def validate(self) -> ValidationReport:
        """
        Check the current parameters, repairing anything invalid.

        Never raises. Returns the list of repairs applied; an empty report
        means the parameters were already consistent.
        """
        report = ValidationReport()
        params = self._params
        defaults = self.defaults

        weights = self._validate_weights(params.w, report)

        retention = params.request_retention
        low, high = REQUEST_RETENTION_RANGE
        if not _is_number(retention) or not low <= retention <= high:
            replacement = self._default_knob("request_retention", defaults.request_retention, REQUEST_RETENTION_RANGE)
            logger.warning(f"Invalid request retention: {retention}. Using default: {replacement}")
            report.repairs.append(ParameterRepair("request_retention", retention, replacement))
            retention = replacement

        interval = params.maximum_interval
        low, high = MAXIMUM_INTERVAL_RANGE
        if not _is_number(interval) or not low <= interval <= high:
            replacement = self._default_knob("maximum_interval", defaults.maximum_interval, MAXIMUM_INTERVAL_RANGE)
            logger.warning(f"Invalid maximum interval: {interval}. Using default: {replacement}")
            report.repairs.append(ParameterRepair("maximum_interval", interval, replacement))
            interval = replacement

        flags = {}
        for name in _BOOL_FIELDS:
            value = getattr(params, name)
            if not isinstance(value, bool):
                replacement = getattr(defaults, name)
                logger.warning(f"Invalid {name}: {value!r}. Using default: {replacement}")
                report.repairs.append(ParameterRepair(name, value, replacement))
                value = replacement
            flags[name] = value

        self._params = ModelParameters(
            w=weights,
            request_retention=float(retention),
            maximum_interval=int(interval),
            version=FSRS6_VERSION,
            **flags,
        )
        return report

    def _validate_weights(self, weights: Any, report: ValidationReport) -> Tuple[float, ...]:
        if not isinstance(weights, (list, tuple)) or len(weights) != PARAMETER_COUNT:
            length = len(weights) if hasattr(weights, "__len__") else None
            logger.warning(
                f"FSRS6 parameter count mismatch: expected {PARAMETER_COUNT}, got {length}. Using defaults."
            )
            report.repairs.append(ParameterRepair("w", weights, DEFAULT_WEIGHTS))
            return DEFAULT_WEIGHTS

        repaired = []
        for index, weight in enumerate(weights):
            low, high = PARAMETER_RANGES[index]
            if not _is_number(weight) or not low <= weight <= high:
                replacement = DEFAULT_WEIGHTS[index]
                logger.warning(
                    f"Parameter w{index} ({weight}) is outside valid range [{low}, {high}]. "
                    f"Using default: {replacement}"
                )
                report.repairs.append(ParameterRepair("w", weight, replacement, index=index))
                weight = replacement
            repaired.append(float(weight))
        return tuple(repaired)

    @staticmethod
    def _default_knob(name: str, value: Any, bounds: Tuple[float, float]) -> Any:
        # Settings-supplied defaults may themselves be out of range
        if _is_number(value) and bounds[0] <= value <= bounds[1]:
            return value
        return DEFAULT_REQUEST_RETENTION if name == "request_retention" else DEFAULT_MAXIMUM_INTERVAL

    @staticmethod
    def _merge(base: ModelParameters, overrides: Optional[Mapping[str, Any]]) -> ModelParameters:
        if not overrides:
            return base
        changes = {}
        for key, value in overrides.items():
            if key == "version":
                continue
            if key not in ModelParameters.__dataclass_fields__:
                logger.warning(f"Ignoring unknown parameter: {key}")
                continue
            if value is None:
                continue
            if key == "w" and isinstance(value, Sequence) and not isinstance(value, str):
                value = tuple(value)
            changes[key] = value
        return replace(base, **changes)
