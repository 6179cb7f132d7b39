import sys
import math
import logging
from typing import Any, Callable, Dict, List, NamedTuple, Optional, Protocol, Sequence, Tuple

import numpy as np
import numba as nb
from colorama import Fore, Style
from colorama import init as _colorama_init


_colorama_init(autoreset=True)

# Backpointer tags for every cell of the trellis
FROM_D, FROM_U, FROM_L, FROM_INVALID = 0, 1, 2, 3

# Trace verbosity levels
TRACE_NONE, TRACE_BANDS, TRACE_CELLS = 0, 1, 2

# By default, we align DNA k-mers with the parameters used for R9 reads
default_dna_alphabet: str = "ACGT"
default_bandwidth: int = 100
default_p_skip: float = 1e-10
default_p_trim: float = 1e-2
default_min_average_log_emission: float = -5.0
default_max_gap_threshold: int = 50

_LOG_INV_SQRT_2PI = math.log(1.0 / math.sqrt(2.0 * math.pi))

CELL_DTYPE = np.dtype([("score", np.float64), ("trace", np.uint8)])


class BandOrigin(NamedTuple):
    """The lower-left coordinate of a band, defining its local offsets."""

    event_idx: int
    kmer_idx: int


class AlignedPair(NamedTuple):
    kmer_idx: int
    event_idx: int


class TransitionLogProbabilities(NamedTuple):
    skip: float
    stay: float
    step: float
    trim: float


class ScalingParameters(NamedTuple):
    """Per-read scaling of the pore model levels: `mean * scale + shift` and `stdv * var`."""

    shift: float = 0.0
    scale: float = 1.0
    var: float = 1.0


class AlignmentSummary(NamedTuple):
    n_aligned_events: int
    avg_log_emission: float
    max_gap: int
    spanned: bool
    passed: bool


class TraceHook:
    """
    Structured diagnostics for the fill engine and the backtrace.

    The `sink` receives a short tag and a dictionary of fields for every record
    whose level does not exceed `level`. Without a sink nothing is emitted.

    Example usage:
    >>> records = []
    >>> hook = TraceHook(lambda tag, fields: records.append((tag, fields)), TRACE_BANDS)
    >>> hook(TRACE_BANDS, "band", band_idx=2)
    >>> records
    [('band', {'band_idx': 2})]
    """

    def __init__(self, sink: Optional[Callable[[str, Dict[str, Any]], None]] = None, level: int = TRACE_NONE):
        self.sink = sink
        self.level = level if sink is not None else TRACE_NONE

    def enabled(self, level: int) -> bool:
        return self.level >= level > TRACE_NONE

    def __call__(self, level: int, tag: str, **fields) -> None:
        if self.enabled(level):
            self.sink(tag, fields)


def logging_sink(logger: Optional[logging.Logger] = None) -> Callable[[str, Dict[str, Any]], None]:
    """Returns a trace sink that forwards every record to `logger` at DEBUG level."""
    logger = logger if logger is not None else logging.getLogger(__name__)

    def sink(tag: str, fields: Dict[str, Any]) -> None:
        logger.debug("[%s] %s", tag, " ".join(f"{key}: {value}" for key, value in fields.items()))

    return sink


def _validate_banding_arguments(
    bandwidth: Optional[int] = None,
    p_skip: Optional[float] = None,
    p_trim: Optional[float] = None,
) -> Tuple[int, float, float]:
    """Internal method that validates the arguments for the adaptive banded alignment."""
    if bandwidth is None:
        bandwidth = default_bandwidth
    if p_skip is None:
        p_skip = default_p_skip
    if p_trim is None:
        p_trim = default_p_trim

    if isinstance(bandwidth, bool) or not isinstance(bandwidth, (int, np.integer)) or bandwidth <= 0:
        raise ValueError(f"Bandwidth must be a positive integer, got {bandwidth!r}.")
    if not 0.0 < p_skip < 1.0:
        raise ValueError(f"Skip probability must be in (0, 1), got {p_skip}.")
    if not 0.0 < p_trim < 1.0:
        raise ValueError(f"Trim probability must be in (0, 1), got {p_trim}.")

    return int(bandwidth), float(p_skip), float(p_trim)


def _log_probability(p: float) -> float:
    # Zero probability maps onto the unreachable sentinel
    return math.log(p) if p > 0.0 else -math.inf


def transition_log_probabilities(n_events: int, n_kmers: int, p_skip: float, p_trim: float) -> TransitionLogProbabilities:
    """
    Derives the natural-log transition penalties of the simple HMM.

    The stay probability is the expected fraction of events re-observing the same k-mer,
    `1 - n_kmers / n_events`, clamped at zero when there are fewer events than k-mers.
    Whatever is left after skips and stays is the step probability.

    Parameters:
    n_events (int): The number of events being aligned.
    n_kmers (int): The number of k-mers in the candidate sequence.
    p_skip (float): The probability of skipping a k-mer.
    p_trim (float): The probability of discarding one leading or trailing event.

    Returns:
    TransitionLogProbabilities: The log-probabilities of skip, stay, step and trim.
    """
    if n_events <= 0:
        raise ValueError("At least one event is required for alignment.")
    if n_kmers <= 0:
        raise ValueError("At least one k-mer is required for alignment.")

    p_stay = max(0.0, 1.0 - n_kmers / n_events)
    p_step = 1.0 - p_skip - p_stay
    if p_step <= 0.0:
        raise ValueError(f"No probability left for steps: p_skip={p_skip}, p_stay={p_stay}.")

    return TransitionLogProbabilities(
        skip=_log_probability(p_skip),
        stay=_log_probability(p_stay),
        step=_log_probability(p_step),
        trim=_log_probability(p_trim),
    )


def _best_of_three(score_d: float, score_u: float, score_l: float) -> Tuple[float, int]:
    """
    Picks the best of the diagonal, up and left candidates.
    The diagonal wins every tie, and "left" only wins when strictly above
    whatever the first two comparisons settled on.
    """
    max_score = score_d
    from_where = FROM_D
    if score_u > max_score:
        max_score = score_u
        from_where = FROM_U
    if score_l > max_score:
        max_score = score_l
        from_where = FROM_L
    return max_score, from_where


@nb.jit(nopython=True)
def _kmer_ranks_kernel(codes: np.ndarray, k: int, alphabet_size: int) -> np.ndarray:
    """
    Computes the lexicographic rank of every k-mer in a translated sequence.
    Should be called through `kmer_ranks`.

    Parameters:
    codes (np.ndarray): The sequence, translated into alphabet offsets.
    k (int): The k-mer length.
    alphabet_size (int): The number of symbols in the alphabet.

    Returns:
    np.ndarray: One rank per k-mer, in sequence order.
    """
    n_kmers = len(codes) - k + 1
    ranks = np.empty(n_kmers, dtype=np.int64)
    for i in range(n_kmers):
        rank = 0
        for j in range(k):
            rank = rank * alphabet_size + codes[i + j]
        ranks[i] = rank
    return ranks


def _log_normal_pdf(x: float, mean: float, stdv: float) -> float:
    a = (x - mean) / stdv
    return _LOG_INV_SQRT_2PI - math.log(stdv) - 0.5 * a * a


def _translate_sequence(seq: str, alphabet: str) -> np.ndarray:
    assert all(char in alphabet for char in seq), f"Found unknown character in sequence: {seq}"
    return np.array([alphabet.index(char) for char in seq], dtype=np.uint8)


def kmer_ranks(sequence: str, k: int, alphabet: Optional[str] = None) -> np.ndarray:
    """
    Ranks every overlapping k-mer of `sequence`, once, so the fill loop can look them up.

    Parameters:
    sequence (str): The candidate sequence.
    k (int): The k-mer length.
    alphabet (Optional[str]): The ordered alphabet; "ACGT" by default.

    Returns:
    np.ndarray: `len(sequence) - k + 1` ranks.

    Example usage:
    >>> kmer_ranks("ACGT", 2)
    array([ 1,  6, 11])
    """
    if alphabet is None:
        alphabet = default_dna_alphabet
    if k <= 0:
        raise ValueError(f"K-mer length must be positive, got {k}.")
    if len(sequence) < k:
        raise ValueError(f"Sequence of length {len(sequence)} is shorter than k={k}.")
    return _kmer_ranks_kernel(_translate_sequence(sequence, alphabet), k, len(alphabet))


def kmer_rank(kmer: str, alphabet: Optional[str] = None) -> int:
    return int(kmer_ranks(kmer, len(kmer), alphabet)[0])


class PoreModel:
    """
    Gaussian emission model: one expected current level per k-mer rank.

    Attributes:
    k (int): The k-mer length.
    level_means (np.ndarray): The expected event mean for every rank.
    level_stdvs (np.ndarray): The expected standard deviation for every rank.
    alphabet (str): The ordered alphabet that defines the ranks.
    """

    def __init__(self, k: int, level_means: np.ndarray, level_stdvs: np.ndarray, alphabet: Optional[str] = None):
        self.k = k
        self.alphabet = alphabet if alphabet is not None else default_dna_alphabet
        self.level_means = np.asarray(level_means, dtype=np.float64)
        self.level_stdvs = np.asarray(level_stdvs, dtype=np.float64)

        n_ranks = len(self.alphabet) ** k
        if self.level_means.shape != (n_ranks,) or self.level_stdvs.shape != (n_ranks,):
            raise ValueError(f"Expected {n_ranks} levels for k={k}, got {self.level_means.shape[0]}.")
        if not (self.level_stdvs > 0).all():
            raise ValueError("Level standard deviations must be positive.")

    def log_probability_match(
        self,
        event_means: np.ndarray,
        kmer_rank: int,
        event_idx: int,
        scaling: Optional[ScalingParameters] = None,
    ) -> float:
        """Log-density of the event's mean under the (scaled) level of `kmer_rank`."""
        if scaling is None:
            scaling = ScalingParameters()
        mean = self.level_means[kmer_rank] * scaling.scale + scaling.shift
        stdv = self.level_stdvs[kmer_rank] * scaling.var
        return _log_normal_pdf(float(event_means[event_idx]), mean, stdv)


class BandedViterbiResult(Protocol):
    """
    The capabilities the fill engine and the backtrace rely on.
    Any storage implementing them can replace `AdaptiveBandedViterbi`, for instance
    to instrument the fills, without touching the recurrence.
    """

    n_events: int
    n_kmers: int
    bandwidth: int
    band_origins: List[BandOrigin]
    tracer: TraceHook

    def initialize(self, n_events: int, n_kmers: int, bandwidth: int) -> None: ...

    def get_offset_for_event_in_band(self, band_idx: int, event_idx: int) -> int: ...

    def get_offset_for_kmer_in_band(self, band_idx: int, kmer_idx: int) -> int: ...

    def get_event_at_band_offset(self, band_idx: int, offset: int) -> int: ...

    def get_kmer_at_band_offset(self, band_idx: int, offset: int) -> int: ...

    def event_kmer_to_band(self, event_idx: int, kmer_idx: int) -> int: ...

    def is_offset_valid(self, offset: int) -> bool: ...

    def get(self, band_idx: int, offset: int) -> float: ...

    def get_trace(self, band_idx: int, offset: int) -> int: ...

    def set(self, band_idx: int, offset: int, score: float, from_where: int) -> None: ...

    def set3(self, band_idx: int, offset: int, score_d: float, score_u: float, score_l: float) -> None: ...

    def determine_band_origin(self, band_idx: int) -> None: ...

    def get_offset_range_for_band(self, band_idx: int) -> Tuple[int, int]: ...

    @property
    def num_bands(self) -> int: ...


class AdaptiveBandedViterbi:
    """
    Score and backpointer storage for one adaptive banded alignment.

    Cells live in a single contiguous buffer of `num_bands * bandwidth` records,
    addressed as `band_idx * bandwidth + offset`. Every band is an anti-diagonal of
    the (event, k-mer) trellis, `band_idx = event_idx + kmer_idx + 2`, and its
    origin maps coordinates onto local offsets:

    - event offset: `origin.event_idx - event_idx`
    - k-mer offset: `kmer_idx - origin.kmer_idx`

    Reads outside `[0, bandwidth)` return `-inf` and `FROM_INVALID`.
    An instance belongs to one alignment and one thread.
    """

    def __init__(
        self,
        trace: Optional[Callable[[str, Dict[str, Any]], None]] = None,
        trace_level: int = TRACE_NONE,
    ):
        self.tracer = TraceHook(trace, trace_level)
        self.cells = np.empty(0, dtype=CELL_DTYPE)
        self._scores = self.cells["score"]
        self._trace = self.cells["trace"]
        self.band_origins: List[BandOrigin] = []
        self.n_events = 0
        self.n_kmers = 0
        self.bandwidth = 0
        self.n_fills = 0

    def initialize(self, n_events: int, n_kmers: int, bandwidth: int) -> None:
        self.n_events = n_events
        self.n_kmers = n_kmers
        self.bandwidth = bandwidth
        self.n_fills = 0
        n_bands = (n_events + 1) + (n_kmers + 1)

        try:
            cells = np.empty(n_bands * bandwidth, dtype=CELL_DTYPE)
        except (MemoryError, ValueError):
            print(f"Memory allocation failed at initialize for {n_bands} x {bandwidth} cells", file=sys.stderr)
            sys.exit(1)
        cells["score"] = -np.inf
        cells["trace"] = FROM_INVALID

        # Both views alias the same buffer
        self.cells = cells
        self._scores = cells["score"]
        self._trace = cells["trace"]

        # Initialize positions of first two bands
        half_bandwidth = bandwidth // 2
        self.band_origins = [BandOrigin(0, 0)] * n_bands
        self.band_origins[0] = BandOrigin(half_bandwidth - 1, -1 - half_bandwidth)
        self.band_origins[1] = self.move_band_down(self.band_origins[0])

    @property
    def num_bands(self) -> int:
        return len(self.band_origins)

    @property
    def num_fills(self) -> int:
        return self.n_fills

    def get_offset_for_event_in_band(self, band_idx: int, event_idx: int) -> int:
        return self.band_origins[band_idx].event_idx - event_idx

    def get_offset_for_kmer_in_band(self, band_idx: int, kmer_idx: int) -> int:
        return kmer_idx - self.band_origins[band_idx].kmer_idx

    def get_event_at_band_offset(self, band_idx: int, offset: int) -> int:
        return self.band_origins[band_idx].event_idx - offset

    def get_kmer_at_band_offset(self, band_idx: int, offset: int) -> int:
        return self.band_origins[band_idx].kmer_idx + offset

    def event_kmer_to_band(self, event_idx: int, kmer_idx: int) -> int:
        return (event_idx + 1) + (kmer_idx + 1)

    def is_offset_valid(self, offset: int) -> bool:
        return 0 <= offset < self.bandwidth

    def get(self, band_idx: int, offset: int) -> float:
        if not self.is_offset_valid(offset):
            return -math.inf
        return float(self._scores[band_idx * self.bandwidth + offset])

    def get_trace(self, band_idx: int, offset: int) -> int:
        if not self.is_offset_valid(offset):
            return FROM_INVALID
        return int(self._trace[band_idx * self.bandwidth + offset])

    def set(self, band_idx: int, offset: int, score: float, from_where: int) -> None:
        idx = band_idx * self.bandwidth + offset
        self._scores[idx] = score
        self._trace[idx] = from_where

    def set3(self, band_idx: int, offset: int, score_d: float, score_u: float, score_l: float) -> None:
        max_score, from_where = _best_of_three(float(score_d), float(score_u), float(score_l))
        self.set(band_idx, offset, max_score, from_where)
        self.n_fills += 1

    @staticmethod
    def move_band_down(origin: BandOrigin) -> BandOrigin:
        return BandOrigin(origin.event_idx + 1, origin.kmer_idx)

    @staticmethod
    def move_band_right(origin: BandOrigin) -> BandOrigin:
        return BandOrigin(origin.event_idx, origin.kmer_idx + 1)

    def determine_band_origin(self, band_idx: int) -> None:
        """
        Places the band according to Suzuki's adaptive rule, comparing the lower-left
        and upper-right cells of the previous band. When both are out of band the
        movements simply alternate: right on odd bands, down on even ones.
        """
        ll = self.get(band_idx - 1, 0)
        ur = self.get(band_idx - 1, self.bandwidth - 1)

        if ll == -math.inf and ur == -math.inf:
            right = band_idx % 2 == 1
        else:
            right = ll < ur

        previous = self.band_origins[band_idx - 1]
        self.band_origins[band_idx] = self.move_band_right(previous) if right else self.move_band_down(previous)

    def get_offset_range_for_band(self, band_idx: int) -> Tuple[int, int]:
        # Restrict the inner loop to the offsets of legal events and k-mers
        kmer_min_offset = self.get_offset_for_kmer_in_band(band_idx, 0)
        kmer_max_offset = self.get_offset_for_kmer_in_band(band_idx, self.n_kmers)

        event_min_offset = self.get_offset_for_event_in_band(band_idx, self.n_events - 1)
        event_max_offset = self.get_offset_for_event_in_band(band_idx, -1)

        min_offset = max(kmer_min_offset, event_min_offset, 0)
        max_offset = min(kmer_max_offset, event_max_offset, self.bandwidth)
        return min_offset, max_offset


def adaptive_banded_simple_hmm(
    n_events: int,
    kmer_ranks: np.ndarray,
    emission: Callable[[int, int], float],
    result: BandedViterbiResult,
    bandwidth: int,
    p_skip: float,
    p_trim: float,
) -> TransitionLogProbabilities:
    """
    Fills the banded Viterbi trellis of a simple skip/stay/step HMM, band by band.

    The kernel has linear complexity in space and time with respect to the number
    of bands, as it only computes `bandwidth` cells per anti-diagonal. Which cells
    those are is decided adaptively, so the band follows the probability mass.
    The result must be passed to `banded_backtrack` to recover the path.

    Parameters:
    n_events (int): The number of events to align.
    kmer_ranks (np.ndarray): The precomputed rank of every k-mer.
    emission (Callable[[int, int], float]): Log-probability of an event index given a k-mer rank.
    result (BandedViterbiResult): The storage to (re)initialize and fill.
    bandwidth (int): The number of cells computed per band.
    p_skip (float): The probability of skipping a k-mer.
    p_trim (float): The probability of discarding a leading or trailing event.

    Returns:
    TransitionLogProbabilities: The transition penalties used for the fill.

    Notes:
    With `D` as the score, `e` the event and `k` the k-mer of a cell:
    - D(e, k) from the diagonal = D(e - 1, k - 1) + lp_step + emission(e, k)
    - D(e, k) from above        = D(e - 1, k) + lp_stay + emission(e, k)
    - D(e, k) from the left     = D(e, k - 1) + lp_skip, or for k = 0
                                  D(e, -1) + lp_step + emission(e, 0)
    - D(e, -1) = (e + 1) * lp_trim, the cost of trimming the leading events
    """
    n_kmers = len(kmer_ranks)
    lp = transition_log_probabilities(n_events, n_kmers, p_skip, p_trim)
    tracer = result.tracer
    trace_cells = tracer.enabled(TRACE_CELLS)

    result.initialize(n_events, n_kmers, bandwidth)

    # band 0: score zero in the start cell
    start_cell_offset = result.get_offset_for_kmer_in_band(0, -1)
    assert result.is_offset_valid(start_cell_offset)
    assert result.get_offset_for_event_in_band(0, -1) == start_cell_offset
    result.set(0, start_cell_offset, 0.0, FROM_INVALID)

    # band 1: first event is trimmed
    first_trim_offset = result.get_offset_for_event_in_band(1, 0)
    assert result.get_kmer_at_band_offset(1, first_trim_offset) == -1
    assert result.is_offset_valid(first_trim_offset)
    result.set(1, first_trim_offset, lp.trim, FROM_U)
    tracer(TRACE_BANDS, "trim-init", band_idx=1, offset=first_trim_offset, score=lp.trim)

    for band_idx in range(2, result.num_bands):
        result.determine_band_origin(band_idx)
        tracer(TRACE_BANDS, "band", band_idx=band_idx, origin=result.band_origins[band_idx])

        # If the trim state is within the band, fill it in here
        trim_offset = result.get_offset_for_kmer_in_band(band_idx, -1)
        if result.is_offset_valid(trim_offset):
            event_idx = result.get_event_at_band_offset(band_idx, trim_offset)
            if 0 <= event_idx < n_events:
                result.set(band_idx, trim_offset, lp.trim * (event_idx + 1), FROM_U)
            else:
                result.set(band_idx, trim_offset, -math.inf, FROM_INVALID)

        min_offset, max_offset = result.get_offset_range_for_band(band_idx)
        for offset in range(min_offset, max_offset):
            event_idx = result.get_event_at_band_offset(band_idx, offset)
            kmer_idx = result.get_kmer_at_band_offset(band_idx, offset)
            kmer_rank = int(kmer_ranks[kmer_idx])

            offset_up = result.get_offset_for_event_in_band(band_idx - 1, event_idx - 1)
            offset_left = result.get_offset_for_kmer_in_band(band_idx - 1, kmer_idx - 1)
            offset_diag = result.get_offset_for_kmer_in_band(band_idx - 2, kmer_idx - 1)
            assert offset_diag == result.get_offset_for_event_in_band(band_idx - 2, event_idx - 1)
            assert offset_up - offset_left == 1

            # These are -inf if the neighbouring cells are out of the band
            up = result.get(band_idx - 1, offset_up)
            left = result.get(band_idx - 1, offset_left)
            diag = result.get(band_idx - 2, offset_diag)

            lp_emission = emission(event_idx, kmer_rank)
            score_d = diag + lp.step + lp_emission
            score_u = up + lp.stay + lp_emission
            score_l = left + (lp.skip if kmer_idx > 0 else lp.step + lp_emission)
            result.set3(band_idx, offset, score_d, score_u, score_l)

            if trace_cells:
                tracer(
                    TRACE_CELLS,
                    "fill",
                    band_idx=band_idx,
                    offset=offset,
                    event_idx=event_idx,
                    kmer_idx=kmer_idx,
                    rank=kmer_rank,
                    emission=lp_emission,
                    score=result.get(band_idx, offset),
                )

    return lp


def banded_backtrack(result: BandedViterbiResult, lp_trim: float) -> List[AlignedPair]:
    """
    Recovers the best path from a filled trellis.

    The path ends at the last k-mer, on the event that scores best once the remaining
    trailing events are trimmed; ties keep the earliest event. Skipped k-mers are
    consumed without emitting a pair. The walk stops early at an unset backpointer,
    which only happens when no path inside the band reaches the start.

    Parameters:
    result (BandedViterbiResult): The storage filled by `adaptive_banded_simple_hmm`.
    lp_trim (float): The log-probability of trimming one event.

    Returns:
    List[AlignedPair]: The aligned (kmer_idx, event_idx) pairs in ascending order.
    """
    tracer = result.tracer
    out: List[AlignedPair] = []

    max_score = -math.inf
    curr_event_idx = 0
    curr_kmer_idx = result.n_kmers - 1

    # Find best score between an event and the last k-mer, after trimming the remaining events
    for event_idx in range(result.n_events):
        band_idx = result.event_kmer_to_band(event_idx, curr_kmer_idx)
        offset = result.get_offset_for_event_in_band(band_idx, event_idx)
        if result.is_offset_valid(offset):
            s = result.get(band_idx, offset) + (result.n_events - event_idx) * lp_trim
            if s > max_score:
                max_score = s
                curr_event_idx = event_idx
    tracer(TRACE_BANDS, "backtrack-start", event_idx=curr_event_idx, kmer_idx=curr_kmer_idx, score=max_score)

    is_skip = False
    while curr_kmer_idx >= 0 and curr_event_idx >= 0:
        if not is_skip:
            out.append(AlignedPair(curr_kmer_idx, curr_event_idx))

        band_idx = result.event_kmer_to_band(curr_event_idx, curr_kmer_idx)
        offset = result.get_offset_for_event_in_band(band_idx, curr_event_idx)
        assert result.get_offset_for_kmer_in_band(band_idx, curr_kmer_idx) == offset

        from_where = result.get_trace(band_idx, offset)
        tracer(TRACE_CELLS, "backtrack", event_idx=curr_event_idx, kmer_idx=curr_kmer_idx, from_where=from_where)
        if from_where == FROM_D:
            curr_kmer_idx -= 1
            curr_event_idx -= 1
            is_skip = False
        elif from_where == FROM_U:
            curr_event_idx -= 1
            is_skip = False
        elif from_where == FROM_L:
            curr_kmer_idx -= 1
            is_skip = True
        else:
            # The path left the band: nothing reachable precedes this cell
            break

    out.reverse()
    return out


def adaptive_banded_alignment(
    event_means: np.ndarray,
    sequence: str,
    pore_model: PoreModel,
    bandwidth: Optional[int] = None,
    p_skip: Optional[float] = None,
    p_trim: Optional[float] = None,
    scaling: Optional[ScalingParameters] = None,
    trace: Optional[Callable[[str, Dict[str, Any]], None]] = None,
    trace_level: int = TRACE_NONE,
) -> List[AlignedPair]:
    """
    Aligns a series of events to the k-mers of a sequence using adaptive banded Viterbi.

    Parameters:
    event_means (np.ndarray): The observed event means, in order.
    sequence (str): The candidate sequence.
    pore_model (PoreModel): The emission model providing expected levels per k-mer.
    bandwidth (Optional[int]): The number of cells computed per band.
    p_skip (Optional[float]): The probability of skipping a k-mer.
    p_trim (Optional[float]): The probability of trimming a leading or trailing event.
    scaling (Optional[ScalingParameters]): Per-read scaling of the pore model.
    trace (Optional[Callable]): A sink for structured diagnostics, see `TraceHook`.
    trace_level (int): One of TRACE_NONE, TRACE_BANDS or TRACE_CELLS.

    Returns:
    List[AlignedPair]: The (kmer_idx, event_idx) pairs of the best path, in ascending order.

    Default values:
    >>> bandwidth = 100
    >>> p_skip = 1e-10
    >>> p_trim = 1e-2

    Example usage:
    >>> from adaptive_banding import adaptive_banded_alignment, load_pore_model
    >>> model = load_pore_model("r9.4_450bps.nucleotide.6mer.template.model")
    >>> pairs = adaptive_banded_alignment(event_means, "ACGTTGCAAGCT", model)
    >>> print("Aligned pairs:", pairs)
    """
    bandwidth, p_skip, p_trim = _validate_banding_arguments(bandwidth=bandwidth, p_skip=p_skip, p_trim=p_trim)

    event_means = np.asarray(event_means, dtype=np.float64)
    if event_means.ndim != 1 or len(event_means) == 0:
        raise ValueError("Expected a non-empty one-dimensional array of event means.")

    ranks = kmer_ranks(sequence, pore_model.k, pore_model.alphabet)
    if scaling is None:
        scaling = ScalingParameters()

    def emission(event_idx: int, rank: int) -> float:
        return pore_model.log_probability_match(event_means, rank, event_idx, scaling)

    result = AdaptiveBandedViterbi(trace=trace, trace_level=trace_level)
    lp = adaptive_banded_simple_hmm(len(event_means), ranks, emission, result, bandwidth, p_skip, p_trim)
    return banded_backtrack(result, lp.trim)


def alignment_moves(pairs: Sequence[AlignedPair]) -> List[int]:
    """
    Number of k-mers advanced at every aligned pair: 0 for a stay, 1 for a step
    and more than 1 when k-mers were skipped. The first pair counts as a step.
    """
    moves = []
    previous_kmer_idx = None
    for kmer_idx, _ in pairs:
        moves.append(1 if previous_kmer_idx is None else kmer_idx - previous_kmer_idx)
        previous_kmer_idx = kmer_idx
    return moves


def summarize_alignment(
    pairs: Sequence[AlignedPair],
    event_means: np.ndarray,
    sequence: str,
    pore_model: PoreModel,
    scaling: Optional[ScalingParameters] = None,
    min_average_log_emission: Optional[float] = None,
    max_gap_threshold: Optional[int] = None,
) -> AlignmentSummary:
    """
    Quality-checks an alignment the way read loaders do before trusting it.

    An alignment passes when its average emission is high enough, it spans the
    sequence from the first to the last k-mer, and it never skips more than
    `max_gap_threshold` consecutive k-mers.

    Parameters:
    pairs (Sequence[AlignedPair]): The alignment to check.
    event_means (np.ndarray): The aligned event means.
    sequence (str): The candidate sequence.
    pore_model (PoreModel): The emission model used for alignment.
    scaling (Optional[ScalingParameters]): Per-read scaling of the pore model.
    min_average_log_emission (Optional[float]): Lowest acceptable mean log-emission, -5.0 by default.
    max_gap_threshold (Optional[int]): Longest acceptable run of skipped k-mers, 50 by default.

    Returns:
    AlignmentSummary: The QC statistics and the verdict.
    """
    if min_average_log_emission is None:
        min_average_log_emission = default_min_average_log_emission
    if max_gap_threshold is None:
        max_gap_threshold = default_max_gap_threshold

    if not pairs:
        return AlignmentSummary(0, -math.inf, 0, False, False)

    ranks = kmer_ranks(sequence, pore_model.k, pore_model.alphabet)
    event_means = np.asarray(event_means, dtype=np.float64)
    sum_emission = sum(
        pore_model.log_probability_match(event_means, int(ranks[kmer_idx]), event_idx, scaling)
        for kmer_idx, event_idx in pairs
    )
    avg_log_emission = sum_emission / len(pairs)
    max_gap = max(max(move - 1, 0) for move in alignment_moves(pairs))
    spanned = pairs[0].kmer_idx == 0 and pairs[-1].kmer_idx == len(ranks) - 1
    passed = avg_log_emission >= min_average_log_emission and spanned and max_gap <= max_gap_threshold
    return AlignmentSummary(len(pairs), avg_log_emission, max_gap, spanned, passed)


def colorize_moves(moves: Sequence[int]) -> str:
    """
    Colorizes the move string: steps in green, stays in yellow, skips in red.

    Parameters:
    moves (Sequence[int]): The moves, as produced by `alignment_moves`.

    Returns:
    str: The colorized move string.
    """
    colored = ""
    for move in moves:
        if move == 1:
            colored += Fore.GREEN + "1" + Style.RESET_ALL
        elif move == 0:
            colored += Fore.YELLOW + "0" + Style.RESET_ALL
        else:
            colored += Fore.RED + str(move) + Style.RESET_ALL
    return colored


def load_pore_model(path: str, alphabet: Optional[str] = None) -> PoreModel:
    """
    Reads a whitespace-separated table of `kmer level_mean level_stdv` rows.
    Lines starting with `#` and a `kmer` header are ignored; extra columns are allowed.
    """
    if alphabet is None:
        alphabet = default_dna_alphabet

    rows = []
    with open(path, "r") as file:
        for line in file:
            fields = line.split()
            if not fields or fields[0].startswith("#") or fields[0] == "kmer":
                continue
            if len(fields) < 3:
                raise ValueError(f"Malformed pore model line: {line.strip()!r}")
            rows.append((fields[0], float(fields[1]), float(fields[2])))

    if not rows:
        raise ValueError(f"No k-mer levels found in {path}")

    k = len(rows[0][0])
    n_ranks = len(alphabet) ** k
    level_means = np.full(n_ranks, np.nan)
    level_stdvs = np.full(n_ranks, np.nan)
    for kmer, level_mean, level_stdv in rows:
        if len(kmer) != k:
            raise ValueError(f"Mixed k-mer lengths in {path}: {kmer}")
        rank = kmer_rank(kmer, alphabet)
        level_means[rank] = level_mean
        level_stdvs[rank] = level_stdv

    if np.isnan(level_means).any():
        raise ValueError(f"Pore model {path} lacks levels for some of the {n_ranks} k-mers")
    return PoreModel(k, level_means, level_stdvs, alphabet)


def load_event_means(path: str) -> np.ndarray:
    return np.loadtxt(path, dtype=np.float64, ndmin=1)


def main():
    # Let's parse the input arguments for alignments in CLI
    import argparse

    parser = argparse.ArgumentParser(description="Adaptive banded event-to-sequence alignment CLI utility")
    parser.add_argument(
        "sequence",
        type=str,
        help="The candidate sequence to align the events to, like ACGTTGCAAGCTAGGT",
    )
    parser.add_argument(
        "--events",
        type=str,
        required=True,
        help="The path to a file of whitespace-separated event means",
    )
    parser.add_argument(
        "--model",
        type=str,
        required=True,
        help="The path to the pore model table of k-mer levels",
    )
    parser.add_argument(
        "--bandwidth",
        type=int,
        default=None,
        help=f"The number of cells computed per band; uses {default_bandwidth} by default",
    )
    parser.add_argument(
        "--p-skip",
        type=float,
        default=None,
        help=f"The probability of skipping a k-mer; uses {default_p_skip} by default",
    )
    parser.add_argument(
        "--p-trim",
        type=float,
        default=None,
        help=f"The probability of trimming a leading or trailing event; uses {default_p_trim} by default",
    )
    parser.add_argument("--shift", type=float, default=0.0, help="Shift applied to the model levels")
    parser.add_argument("--scale", type=float, default=1.0, help="Scale applied to the model levels")
    parser.add_argument("--var", type=float, default=1.0, help="Scale applied to the model deviations")
    parser.add_argument(
        "--verbose",
        "-v",
        action="count",
        default=0,
        help="Trace band placement (-v) or every cell (-vv) to stderr",
    )
    args = parser.parse_args()

    trace_level = min(args.verbose, TRACE_CELLS)
    if trace_level:
        logging.basicConfig(level=logging.DEBUG, format="%(name)s %(message)s")

    scaling = ScalingParameters(shift=args.shift, scale=args.scale, var=args.var)
    try:
        pore_model = load_pore_model(args.model)
        event_means = load_event_means(args.events)
        pairs = adaptive_banded_alignment(
            event_means,
            args.sequence,
            pore_model,
            bandwidth=args.bandwidth,
            p_skip=args.p_skip,
            p_trim=args.p_trim,
            scaling=scaling,
            trace=logging_sink() if trace_level else None,
            trace_level=trace_level,
        )
        summary = summarize_alignment(pairs, event_means, args.sequence, pore_model, scaling)
    except Exception as exc:
        print("Error:", exc)
        exit(1)

    print()
    print("Sequence:   ", args.sequence)
    print("Events:     ", len(event_means))
    print()
    print("Pairs:      ", " ".join(f"{kmer_idx}:{event_idx}" for kmer_idx, event_idx in pairs))
    print("Moves:      ", colorize_moves(alignment_moves(pairs)))
    print("Emission:   ", f"{summary.avg_log_emission:.3f}")
    print("Max gap:    ", summary.max_gap)
    print("Spanned:    ", summary.spanned)
    print("Passed QC:  ", summary.passed)


if __name__ == "__main__":
    main()
