import math
from random import choice, randint, random, sample, seed
from typing import Callable, List, Tuple

import numpy as np
import pytest

from adaptive_banding import (
    FROM_D,
    FROM_U,
    FROM_L,
    FROM_INVALID,
    TRACE_BANDS,
    TRACE_CELLS,
    AdaptiveBandedViterbi,
    AlignedPair,
    PoreModel,
    ScalingParameters,
    adaptive_banded_alignment,
    adaptive_banded_simple_hmm,
    alignment_moves,
    banded_backtrack,
    colorize_moves,
    kmer_rank,
    kmer_ranks,
    load_event_means,
    load_pore_model,
    summarize_alignment,
    transition_log_probabilities,
)


def random_emissions(n_events: int, n_ranks: int) -> Callable[[int, int], float]:
    table = np.random.uniform(-8.0, 0.0, size=(n_events, n_ranks))
    return lambda event_idx, rank: float(table[event_idx, rank])


def diagonal_emissions(ranks: np.ndarray) -> Callable[[int, int], float]:
    return lambda event_idx, rank: 0.0 if rank == ranks[event_idx] else -50.0


def wide_bandwidth(n_events: int, n_kmers: int) -> int:
    # Wide enough for every trellis cell to fall inside its band
    return 2 * (max(n_events, n_kmers) + 4)


def full_viterbi(
    n_events: int,
    ranks: np.ndarray,
    emission: Callable[[int, int], float],
    p_skip: float,
    p_trim: float,
) -> List[Tuple[int, int]]:
    """Unbanded quadratic Viterbi over the same skip/stay/step/trim model."""
    n_kmers = len(ranks)
    lp = transition_log_probabilities(n_events, n_kmers, p_skip, p_trim)

    # Row and column zero stand for event -1 and k-mer -1
    scores = np.full((n_events + 1, n_kmers + 1), -math.inf)
    changes = np.full((n_events + 1, n_kmers + 1), FROM_INVALID, dtype=np.uint8)
    scores[0, 0] = 0.0
    for i in range(1, n_events + 1):
        scores[i, 0] = lp.trim * i
        changes[i, 0] = FROM_U

    for i in range(1, n_events + 1):
        for j in range(1, n_kmers + 1):
            lp_emission = emission(i - 1, int(ranks[j - 1]))
            score_d = scores[i - 1, j - 1] + lp.step + lp_emission
            score_u = scores[i - 1, j] + lp.stay + lp_emission
            score_l = scores[i, j - 1] + (lp.skip if j > 1 else lp.step + lp_emission)
            best, change = score_d, FROM_D
            if score_u > best:
                best, change = score_u, FROM_U
            if score_l > best:
                best, change = score_l, FROM_L
            scores[i, j] = best
            changes[i, j] = change

    best, i = -math.inf, 1
    for event_idx in range(n_events):
        s = scores[event_idx + 1, n_kmers] + (n_events - event_idx) * lp.trim
        if s > best:
            best, i = s, event_idx + 1

    out, j, is_skip = [], n_kmers, False
    while i > 0 and j > 0:
        if not is_skip:
            out.append((j - 1, i - 1))
        change = changes[i, j]
        is_skip = change == FROM_L
        if change == FROM_D:
            i, j = i - 1, j - 1
        elif change == FROM_U:
            i -= 1
        else:
            j -= 1
    return out[::-1]


def fill(n_events: int, ranks: np.ndarray, emission, bandwidth: int, p_skip=1e-10, p_trim=1e-2, **kwargs):
    result = AdaptiveBandedViterbi(**kwargs)
    lp = adaptive_banded_simple_hmm(n_events, ranks, emission, result, bandwidth, p_skip, p_trim)
    return result, lp


"""
Test the best-of-three selection and its tie-break policy.

The diagonal wins every tie, "up" must be strictly greater than the diagonal,
and "left" must be strictly greater than whatever won between the first two.
"""


@pytest.mark.parametrize(
    "scores, expected_score, expected_from",
    [
        ((0.0, 0.0, 0.0), 0.0, FROM_D),
        ((-3.0, -1.0, -2.0), -1.0, FROM_U),
        ((-3.0, -2.0, -1.0), -1.0, FROM_L),
        ((-1.0, -1.0, -5.0), -1.0, FROM_D),  # diagonal and up tie
        ((-1.0, -5.0, -1.0), -1.0, FROM_D),  # diagonal and left tie
        ((-5.0, -1.0, -1.0), -1.0, FROM_U),  # up and left tie above the diagonal
        ((-1.0, -2.0, -0.5), -0.5, FROM_L),
        ((-math.inf, -math.inf, -math.inf), -math.inf, FROM_D),
    ],
)
def test_best_of_three(scores, expected_score, expected_from):
    result = AdaptiveBandedViterbi()
    result.initialize(3, 3, 4)
    result.set3(2, 1, *scores)
    assert result.get(2, 1) == expected_score
    assert result.get_trace(2, 1) == expected_from
    assert result.num_fills == 1


"""
Test that reads outside of a band never fail.

Offsets outside of [0, bandwidth) must return the unreachable sentinel
and the unset backpointer, regardless of the band.
"""


@pytest.mark.parametrize("bandwidth", [1, 2, 7, 16])
def test_out_of_band_reads(bandwidth: int):
    result = AdaptiveBandedViterbi()
    result.initialize(5, 3, bandwidth)
    assert result.num_bands == (5 + 1) + (3 + 1)

    for band_idx in range(result.num_bands):
        for offset in (-100, -1, bandwidth, bandwidth + 1, 10 * bandwidth):
            assert result.get(band_idx, offset) == -math.inf
            assert result.get_trace(band_idx, offset) == FROM_INVALID
        for offset in range(bandwidth):
            assert result.get(band_idx, offset) == -math.inf
            assert result.get_trace(band_idx, offset) == FROM_INVALID


def test_initial_band_origins():
    result = AdaptiveBandedViterbi()
    result.initialize(10, 8, 10)
    assert result.band_origins[0] == (4, -6)
    assert result.band_origins[1] == (5, -6)
    assert result.get_offset_for_event_in_band(0, -1) == result.get_offset_for_kmer_in_band(0, -1)
    assert result.get_offset_for_event_in_band(1, 0) == result.get_offset_for_kmer_in_band(1, -1)


@pytest.mark.parametrize("error", [MemoryError, ValueError])
def test_failed_allocation_exits(monkeypatch, capsys, error):
    def failing_empty(*args, **kwargs):
        raise error("cannot allocate")

    monkeypatch.setattr(np, "empty", failing_empty)
    with pytest.raises(SystemExit) as exit_info:
        AdaptiveBandedViterbi().initialize(100, 50, 10)
    assert exit_info.value.code == 1
    assert "Memory allocation failed" in capsys.readouterr().err


def test_oversized_trellis_exits(capsys):
    # The byte count overflows, which NumPy reports as a `ValueError`
    with pytest.raises(SystemExit) as exit_info:
        AdaptiveBandedViterbi().initialize(10**18, 10, 4)
    assert exit_info.value.code == 1
    assert "Memory allocation failed" in capsys.readouterr().err


"""
Test the boundary conditions of the trellis.

The start state scores zero, and trimming the very first event costs one `log(p_trim)`.
"""


@pytest.mark.parametrize("p_trim", [1e-2, 0.1, 0.5])
def test_first_trim_cell(p_trim: float):
    ranks = kmer_ranks("ACGTAC", 3)
    result, lp = fill(4, ranks, diagonal_emissions(ranks), bandwidth=10, p_trim=p_trim)

    start_offset = result.get_offset_for_kmer_in_band(0, -1)
    assert result.get(0, start_offset) == 0.0

    trim_offset = result.get_offset_for_event_in_band(1, 0)
    assert result.get_kmer_at_band_offset(1, trim_offset) == -1
    assert result.get(1, trim_offset) == pytest.approx(math.log(p_trim))
    assert result.get_trace(1, trim_offset) == FROM_U
    assert lp.trim == pytest.approx(math.log(p_trim))


"""
Test the band identity.

Every cell holding a score must satisfy `band_idx == event_idx + kmer_idx + 2`,
with both offset formulas agreeing on its position in the band.
"""


@pytest.mark.repeat(10)
@pytest.mark.parametrize("bandwidth", [4, 10, 33])
def test_band_identity(bandwidth: int):
    n_kmers = randint(3, 30)
    n_events = randint(n_kmers, 2 * n_kmers)
    ranks = np.array([randint(0, 63) for _ in range(n_kmers)], dtype=np.int64)
    result, _ = fill(n_events, ranks, random_emissions(n_events, 64), bandwidth)

    filled = 0
    for band_idx in range(result.num_bands):
        for offset in range(bandwidth):
            if result.get(band_idx, offset) == -math.inf:
                continue
            event_idx = result.get_event_at_band_offset(band_idx, offset)
            kmer_idx = result.get_kmer_at_band_offset(band_idx, offset)
            assert band_idx == event_idx + kmer_idx + 2
            assert result.event_kmer_to_band(event_idx, kmer_idx) == band_idx
            assert result.get_offset_for_event_in_band(band_idx, event_idx) == offset
            assert result.get_offset_for_kmer_in_band(band_idx, kmer_idx) == offset
            assert -1 <= event_idx < n_events and -1 <= kmer_idx < n_kmers
            filled += 1
    assert filled > 0


@pytest.mark.repeat(5)
def test_band_origins_move_by_one_step():
    n_kmers = randint(5, 40)
    n_events = randint(n_kmers, 3 * n_kmers)
    ranks = np.array([randint(0, 15) for _ in range(n_kmers)], dtype=np.int64)
    result, _ = fill(n_events, ranks, random_emissions(n_events, 16), bandwidth=8)

    for band_idx in range(1, result.num_bands):
        previous, current = result.band_origins[band_idx - 1], result.band_origins[band_idx]
        step = (current.event_idx - previous.event_idx, current.kmer_idx - previous.kmer_idx)
        assert step in ((1, 0), (0, 1)), f"Band {band_idx} moved by {step}"


"""
Test band placement when the previous band's edges are unreachable.

With a band much wider than the trellis, the lower-left and upper-right cells of every
band are out of range, so the placement strictly alternates: right on odd bands and
down on even ones, no matter what the emissions say.
"""


@pytest.mark.repeat(5)
@pytest.mark.parametrize("n_kmers", [3, 12])
def test_placement_alternates_by_parity(n_kmers: int):
    n_events = randint(n_kmers, 2 * n_kmers)
    ranks = np.array([randint(0, 15) for _ in range(n_kmers)], dtype=np.int64)
    bandwidth = wide_bandwidth(n_events, n_kmers)
    result, _ = fill(n_events, ranks, random_emissions(n_events, 16), bandwidth)

    for band_idx in range(2, result.num_bands):
        assert result.get(band_idx - 1, 0) == -math.inf
        assert result.get(band_idx - 1, bandwidth - 1) == -math.inf
        previous, current = result.band_origins[band_idx - 1], result.band_origins[band_idx]
        if band_idx % 2 == 1:
            assert current == (previous.event_idx, previous.kmer_idx + 1)
        else:
            assert current == (previous.event_idx + 1, previous.kmer_idx)


def test_placement_follows_higher_edge():
    result = AdaptiveBandedViterbi()
    result.initialize(20, 20, 6)

    # Lower-left below upper-right moves the band right, towards more k-mers
    result.band_origins[2] = result.move_band_down(result.band_origins[1])
    result.set(2, 0, -10.0, FROM_D)
    result.set(2, 5, -1.0, FROM_D)
    result.determine_band_origin(3)
    assert result.band_origins[3] == (result.band_origins[2].event_idx, result.band_origins[2].kmer_idx + 1)

    # Otherwise it moves down, towards more events, even when only one edge is reachable
    result.set(3, 0, -1.0, FROM_D)
    result.determine_band_origin(4)
    assert result.band_origins[4] == (result.band_origins[3].event_idx + 1, result.band_origins[3].kmer_idx)

    result.set(4, 0, -2.0, FROM_D)
    result.set(4, 5, -2.0, FROM_D)
    result.determine_band_origin(5)
    assert result.band_origins[5] == (result.band_origins[4].event_idx + 1, result.band_origins[4].kmer_idx)


def test_offset_range_is_clipped():
    result = AdaptiveBandedViterbi()
    result.initialize(6, 4, 8)
    for band_idx in range(result.num_bands):
        if band_idx >= 2:
            result.determine_band_origin(band_idx)
        min_offset, max_offset = result.get_offset_range_for_band(band_idx)
        assert 0 <= min_offset and max_offset <= 8
        for offset in range(min_offset, max_offset):
            assert 0 <= result.get_event_at_band_offset(band_idx, offset) < 6
            assert 0 <= result.get_kmer_at_band_offset(band_idx, offset) < 4


"""
Test the recovered path on problems with an obvious answer.
"""


def test_diagonal_path():
    ranks = kmer_ranks("ACGTAC", 3)
    assert len(set(ranks.tolist())) == 4

    result, lp = fill(4, ranks, diagonal_emissions(ranks), bandwidth=10)
    pairs = banded_backtrack(result, lp.trim)
    assert pairs == [(0, 0), (1, 1), (2, 2), (3, 3)]
    assert alignment_moves(pairs) == [1, 1, 1, 1]


def test_backtrack_stops_at_unset_backpointer():
    ranks = kmer_ranks("ACGTAC", 3)
    result, lp = fill(4, ranks, diagonal_emissions(ranks), bandwidth=10)
    assert banded_backtrack(result, lp.trim) == [(0, 0), (1, 1), (2, 2), (3, 3)]

    # Cut the path below (event 2, k-mer 2): the walk keeps that pair and stops there
    band_idx = result.event_kmer_to_band(2, 2)
    offset = result.get_offset_for_kmer_in_band(band_idx, 2)
    result.set(band_idx, offset, result.get(band_idx, offset), FROM_INVALID)
    assert banded_backtrack(result, lp.trim) == [(2, 2), (3, 3)]


@pytest.mark.repeat(10)
@pytest.mark.parametrize("n", [5, 20, 50])
def test_step_only_path(n: int):
    ranks = np.array(sample(range(1024), n), dtype=np.int64)
    table = np.random.uniform(-3.0, 0.0, size=(n, 1024))
    emission = lambda event_idx, rank: float(table[event_idx, rank])

    result, lp = fill(n, ranks, emission, bandwidth=wide_bandwidth(n, n), p_skip=1e-12)
    assert lp.stay == -math.inf
    pairs = banded_backtrack(result, lp.trim)

    assert len(pairs) == n
    assert [kmer_idx for kmer_idx, _ in pairs] == list(range(n))
    assert [event_idx for _, event_idx in pairs] == list(range(n))


"""
Test the banded alignment against an unbanded Viterbi.

When the band is wide enough to cover every cell, banding must not change a thing:
the same scores are computed in the same order, so the paths must be identical.
"""


@pytest.mark.repeat(20)
@pytest.mark.parametrize("min_kmers", [1, 5])
@pytest.mark.parametrize("max_kmers", [8, 25])
@pytest.mark.parametrize("p_skip", [1e-10, 0.05])
def test_against_full_viterbi(min_kmers: int, max_kmers: int, p_skip: float):
    n_kmers = randint(min_kmers, max_kmers)
    n_events = randint(n_kmers, 3 * n_kmers)
    ranks = np.array([randint(0, 15) for _ in range(n_kmers)], dtype=np.int64)
    emission = random_emissions(n_events, 16)

    result, lp = fill(n_events, ranks, emission, wide_bandwidth(n_events, n_kmers), p_skip=p_skip)
    banded = banded_backtrack(result, lp.trim)
    expected = full_viterbi(n_events, ranks, emission, p_skip, 1e-2)

    assert [tuple(pair) for pair in banded] == expected, f"""
    Banded and unbanded Viterbi disagree for {n_events} events and {n_kmers} k-mers:
        banded:   {banded}
        unbanded: {expected}
    """


"""
Test that a band too narrow for the data degrades without failing.

The path may be poor, but it is still a monotonic list of in-range pairs.
"""


@pytest.mark.repeat(10)
@pytest.mark.parametrize("bandwidth", [1, 2, 4])
def test_narrow_band_degrades_gracefully(bandwidth: int):
    n_kmers = randint(2, 12)
    n_events = randint(4 * n_kmers, 8 * n_kmers)
    ranks = np.array([randint(0, 15) for _ in range(n_kmers)], dtype=np.int64)

    result, lp = fill(n_events, ranks, random_emissions(n_events, 16), bandwidth)
    pairs = banded_backtrack(result, lp.trim)

    for (kmer1, event1), (kmer2, event2) in zip(pairs, pairs[1:]):
        assert kmer1 <= kmer2 and event1 <= event2
    for kmer_idx, event_idx in pairs:
        assert 0 <= kmer_idx < n_kmers and 0 <= event_idx < n_events


"""
Test that the storage can be substituted without touching the recurrence.
"""


class CountingViterbi(AdaptiveBandedViterbi):
    def __init__(self):
        super().__init__()
        self.cells_seen = []

    def set3(self, band_idx, offset, score_d, score_u, score_l):
        self.cells_seen.append((band_idx, offset))
        super().set3(band_idx, offset, score_d, score_u, score_l)


@pytest.mark.parametrize("bandwidth", [3, 8, 40])
def test_instrumented_storage(bandwidth: int):
    n_kmers, n_events = 15, 25
    ranks = np.array([randint(0, 15) for _ in range(n_kmers)], dtype=np.int64)
    result = CountingViterbi()
    lp = adaptive_banded_simple_hmm(n_events, ranks, random_emissions(n_events, 16), result, bandwidth, 1e-10, 1e-2)

    expected = sum(
        max(0, max_offset - min_offset)
        for min_offset, max_offset in (result.get_offset_range_for_band(b) for b in range(2, result.num_bands))
    )
    assert len(result.cells_seen) == result.num_fills == expected
    assert len(set(result.cells_seen)) == len(result.cells_seen)
    assert [band_idx for band_idx, _ in result.cells_seen] == sorted(band_idx for band_idx, _ in result.cells_seen)
    assert isinstance(banded_backtrack(result, lp.trim), list)


"""
Test the structured trace hook.
"""


@pytest.mark.parametrize("trace_level", [TRACE_BANDS, TRACE_CELLS])
def test_trace_hook(trace_level: int):
    records = []
    ranks = kmer_ranks("ACGTACGG", 3)
    result, lp = fill(
        6,
        ranks,
        random_emissions(6, 64),
        bandwidth=6,
        trace=lambda tag, fields: records.append((tag, fields)),
        trace_level=trace_level,
    )
    banded_backtrack(result, lp.trim)

    tags = [tag for tag, _ in records]
    assert tags.count("trim-init") == 1
    assert tags.count("band") == result.num_bands - 2
    assert tags.count("backtrack-start") == 1
    if trace_level == TRACE_CELLS:
        assert tags.count("fill") == result.num_fills
        assert "backtrack" in tags
    else:
        assert "fill" not in tags and "backtrack" not in tags

    band_fields = [fields for tag, fields in records if tag == "band"]
    assert [fields["band_idx"] for fields in band_fields] == list(range(2, result.num_bands))


def test_silent_without_sink():
    ranks = kmer_ranks("ACGTACGG", 3)
    result, _ = fill(6, ranks, random_emissions(6, 64), bandwidth=6, trace=None, trace_level=TRACE_CELLS)
    assert not result.tracer.enabled(TRACE_BANDS)


"""
Test the default collaborators: k-mer ranking and the Gaussian pore model.
"""


@pytest.mark.parametrize(
    "kmer, expected",
    [("A", 0), ("T", 3), ("AC", 1), ("TT", 15), ("ACGT", 27), ("TTTTTT", 4095)],
)
def test_kmer_rank(kmer: str, expected: int):
    assert kmer_rank(kmer) == expected


def test_kmer_ranks():
    assert kmer_ranks("ACGT", 2).tolist() == [1, 6, 11]
    assert kmer_ranks("ACGT", 4).tolist() == [27]
    assert kmer_ranks("ba", 1, alphabet="ab").tolist() == [1, 0]
    with pytest.raises(ValueError):
        kmer_ranks("AC", 3)


def test_pore_model_log_probability():
    model = PoreModel(1, [80.0, 90.0, 100.0, 110.0], [2.0, 2.0, 4.0, 1.0])
    events = np.array([90.0, 103.0])

    expected = -math.log(2.0) - 0.5 * math.log(2 * math.pi)
    assert model.log_probability_match(events, 1, 0) == pytest.approx(expected)

    expected = -math.log(4.0) - 0.5 * math.log(2 * math.pi) - 0.5 * (3.0 / 4.0) ** 2
    assert model.log_probability_match(events, 2, 1) == pytest.approx(expected)

    # Scaled level is 100 * 1.1 - 7 = 103, scaled deviation 4 * 1.5 = 6
    scaling = ScalingParameters(shift=-7.0, scale=1.1, var=1.5)
    expected = -math.log(6.0) - 0.5 * math.log(2 * math.pi)
    assert model.log_probability_match(events, 2, 1, scaling) == pytest.approx(expected)

    # Scaled level is 100 + 3 = 103, scaled deviation 4 * 0.5 = 2
    expected = -math.log(2.0) - 0.5 * math.log(2 * math.pi)
    assert model.log_probability_match(events, 2, 1, ScalingParameters(shift=3.0, var=0.5)) == pytest.approx(expected)


def test_pore_model_validation():
    with pytest.raises(ValueError):
        PoreModel(2, np.zeros(4), np.ones(4))
    with pytest.raises(ValueError):
        PoreModel(1, np.zeros(4), np.array([1.0, 0.0, 1.0, 1.0]))


def test_load_pore_model(tmp_path):
    path = tmp_path / "model.txt"
    path.write_text("#model_name\ttoy\nkmer\tlevel_mean\tlevel_stdv\tsd_mean\nA\t80.0\t1.5\t0.1\nC\t90\t1.5\t0.1\nG\t100\t2\t0.1\nT\t110\t2.5\t0.1\n")
    model = load_pore_model(str(path))
    assert model.k == 1
    assert model.level_means.tolist() == [80.0, 90.0, 100.0, 110.0]
    assert model.level_stdvs.tolist() == [1.5, 1.5, 2.0, 2.5]

    path.write_text("A\t80.0\t1.5\nC\t90\t1.5\n")
    with pytest.raises(ValueError):
        load_pore_model(str(path))


def test_load_event_means(tmp_path):
    path = tmp_path / "events.txt"
    path.write_text("80.5 91.25\n\n100.0\t110.75\n  120\n")
    events = load_event_means(str(path))
    assert events.dtype == np.float64
    assert events.tolist() == [80.5, 91.25, 100.0, 110.75, 120.0]

    path.write_text("42.0\n")
    events = load_event_means(str(path))
    assert events.shape == (1,)
    assert events[0] == 42.0


"""
Test the complete alignment of synthetic events generated from a sequence.

Every k-mer is observed once or twice, at exactly its model level, with levels far
apart, so the only reasonable alignment is the one the events were generated from.
"""


def synthetic_read(n_bases: int, k: int = 2) -> Tuple[str, np.ndarray, PoreModel, List[AlignedPair]]:
    bases = [choice("ACGT")]
    while len(bases) < n_bases:
        bases.append(choice([base for base in "ACGT" if base != bases[-1]]))
    sequence = "".join(bases)

    n_ranks = 4 ** k
    model = PoreModel(k, np.arange(n_ranks) * 10.0 + 60.0, np.ones(n_ranks))
    ranks = kmer_ranks(sequence, k)

    events, truth = [], []
    for kmer_idx, rank in enumerate(ranks):
        for _ in range(1 + int(random() < 0.5)):
            truth.append(AlignedPair(kmer_idx, len(events)))
            events.append(model.level_means[rank])
    return sequence, np.array(events), model, truth


@pytest.mark.repeat(10)
@pytest.mark.parametrize("n_bases", [6, 30])
def test_synthetic_alignment(n_bases: int):
    sequence, events, model, truth = synthetic_read(n_bases)
    pairs = adaptive_banded_alignment(events, sequence, model, bandwidth=wide_bandwidth(len(events), len(truth)))
    assert pairs == truth, f"""
    Sequence {sequence} with {len(events)} events:
        expected: {truth}
        aligned:  {pairs}
    """

    summary = summarize_alignment(pairs, events, sequence, model)
    assert summary.passed and summary.spanned
    assert summary.max_gap == 0
    assert summary.n_aligned_events == len(events)
    assert summary.avg_log_emission == pytest.approx(-0.5 * math.log(2 * math.pi))
    assert len(colorize_moves(alignment_moves(pairs))) > 0


@pytest.mark.repeat(5)
def test_synthetic_alignment_default_bandwidth():
    sequence, events, model, truth = synthetic_read(40)
    assert adaptive_banded_alignment(events, sequence, model) == truth


def test_alignment_summary_rejections():
    seed(7)
    sequence, events, model, truth = synthetic_read(12)
    n_kmers = len(sequence) - 1

    partial = [pair for pair in truth if pair.kmer_idx < n_kmers - 1]
    summary = summarize_alignment(partial, events, sequence, model)
    assert not summary.spanned and not summary.passed

    gapped = [pair for pair in truth if not 2 <= pair.kmer_idx <= 5]
    summary = summarize_alignment(gapped, events, sequence, model, max_gap_threshold=3)
    assert summary.max_gap == 4 and summary.spanned and not summary.passed
    assert summarize_alignment(gapped, events, sequence, model, max_gap_threshold=4).passed

    summary = summarize_alignment(truth, events + 5.0, sequence, model)
    assert summary.avg_log_emission < -5.0 and not summary.passed

    summary = summarize_alignment([], events, sequence, model)
    assert summary.n_aligned_events == 0 and not summary.passed


def test_alignment_moves():
    pairs = [AlignedPair(0, 0), AlignedPair(0, 1), AlignedPair(1, 2), AlignedPair(3, 3)]
    assert alignment_moves(pairs) == [1, 0, 1, 2]
    assert alignment_moves([]) == []


"""
Test argument validation.
"""


@pytest.mark.parametrize(
    "kwargs",
    [
        {"bandwidth": 0},
        {"bandwidth": -4},
        {"bandwidth": 2.5},
        {"p_skip": 0.0},
        {"p_skip": 1.0},
        {"p_trim": 0.0},
        {"p_trim": 1.5},
    ],
)
def test_invalid_arguments(kwargs):
    model = PoreModel(1, [80.0, 90.0, 100.0, 110.0], [1.0] * 4)
    with pytest.raises(ValueError):
        adaptive_banded_alignment(np.array([80.0, 90.0, 100.0]), "ACG", model, **kwargs)


def test_invalid_inputs():
    model = PoreModel(2, np.arange(16.0), np.ones(16))
    with pytest.raises(ValueError):
        adaptive_banded_alignment(np.array([]), "ACG", model)
    with pytest.raises(ValueError):
        adaptive_banded_alignment(np.array([1.0, 2.0]), "A", model)
    with pytest.raises(ValueError):
        transition_log_probabilities(10, 1, 0.95, 0.01)


def test_fewer_events_than_kmers():
    lp = transition_log_probabilities(3, 5, 1e-10, 1e-2)
    assert lp.stay == -math.inf
    assert lp.step == pytest.approx(math.log(1.0 - 1e-10))

    ranks = kmer_ranks("ACGTACG", 3)
    result, lp = fill(3, ranks, random_emissions(3, 64), bandwidth=wide_bandwidth(3, 5))
    pairs = banded_backtrack(result, lp.trim)
    assert all(0 <= event_idx < 3 for _, event_idx in pairs)


@pytest.mark.parametrize(
    "n_events, n_kmers, p_skip, p_trim, p_stay",
    [
        (10, 4, 1e-3, 0.05, 0.6),
        (8, 4, 0.01, 0.1, 0.5),
        (100, 75, 1e-10, 1e-2, 0.25),
    ],
)
def test_transition_log_probabilities(n_events: int, n_kmers: int, p_skip: float, p_trim: float, p_stay: float):
    lp = transition_log_probabilities(n_events, n_kmers, p_skip, p_trim)
    assert lp.stay == pytest.approx(math.log(p_stay))
    assert lp.step == pytest.approx(math.log(1.0 - p_skip - p_stay))
    assert lp.skip == pytest.approx(math.log(p_skip))
    assert lp.trim == pytest.approx(math.log(p_trim))


def test_equal_lengths_forbid_stays():
    lp = transition_log_probabilities(6, 6, 1e-10, 1e-2)
    assert lp.stay == -math.inf
    assert lp.step == pytest.approx(math.log(1.0 - 1e-10))
