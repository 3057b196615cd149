"""
End-to-end tests of the sequencer on synthetic communities.
"""

import sys
import warnings

import numpy as np
import polars as pl
import pytest

from dynstab import run
from dynstab.core.config import RunConfig
from dynstab.core.smap import SMapFit, SMapResults
from dynstab.core.timeseries import TimeIndexed
from dynstab.errors import ConfigurationError, DataFormatError
from dynstab.io.store import ResultStore
from dynstab.run import STAGES, main, stage_order
from dynstab.validation import block_from_frame

from conftest import FAST_OPTIONS, scenario_a_frame, scenario_b_frame

COMPARED = ['causal_network', 'coefficients', 'eigen', 'svd', 'volume_contraction', 'total_variance']


@pytest.fixture(scope='module')
def scenario_a_run(tmp_path_factory):
    store_dir = tmp_path_factory.mktemp('scenario_a')
    report = run(scenario_a_frame(), str(store_dir), verbose=False, **FAST_OPTIONS)
    return report, store_dir


@pytest.fixture(scope='module')
def scenario_b_run(tmp_path_factory):
    store_dir = tmp_path_factory.mktemp('scenario_b')
    with pytest.warns(RuntimeWarning, match='missing'):
        report = run(scenario_b_frame(), str(store_dir), verbose=False, **FAST_OPTIONS)
    return report, store_dir


def _tables(store_dir, keys=COMPARED):
    store = ResultStore(str(store_dir))
    return {k: store.read(k) for k in keys}


def _assert_same_tables(a, b):
    assert a.keys() == b.keys()
    for key in a:
        assert a[key].keys() == b[key].keys()
        for table in a[key]:
            assert a[key][table].equals(b[key][table]), f"{key}/{table} differs"


class TestStageOrder:

    def test_full_order_respects_requirements(self):
        order = stage_order()
        assert set(order) == set(STAGES)
        for key in order:
            for dep in STAGES[key].requires:
                assert order.index(dep) < order.index(key)

    def test_targets_pull_in_requirements(self):
        assert stage_order(['causal_network']) == ['embedding', 'surrogates', 'causal_network']

    def test_unknown_stage(self):
        with pytest.raises(ConfigurationError, match='stages'):
            stage_order(['lyapunov'])


class TestScenarioA:
    """A drives B at lag 1; C is independent noise."""

    def test_every_stage_completed(self, scenario_a_run):
        report, _ = scenario_a_run
        assert {k: s.status for k, s in report.stages.items()} == {k: 'completed' for k in STAGES}
        assert report.missing() == {}

    def test_bundle_keys(self, scenario_a_run):
        _, store_dir = scenario_a_run
        assert set(ResultStore(str(store_dir)).keys()) == set(STAGES)

    def test_driver_detected(self, scenario_a_run):
        report, _ = scenario_a_run
        network = report['causal_network']
        link = network.link('A', 'B')
        assert link is not None
        assert link.significant

    def test_nothing_drives_noise(self, scenario_a_run):
        report, _ = scenario_a_run
        network = report['causal_network']
        assert network.drivers_of('C') == []
        for cause in ('A', 'B'):
            assert not network.link(cause, 'C').significant

    def test_smap_coefficient_on_driver(self, scenario_a_run):
        report, _ = scenario_a_run
        fit = report['coefficients']['B']
        assert 'A' in fit.model.drivers
        k = fit.model.terms.index(('A', 0))
        coefficients = np.array([row.coefficients[k] for _, row in fit.rows.present()])
        assert len(coefficients) == len(fit.rows)
        assert np.all(np.abs(coefficients) > 0.1)

    def test_volume_contracts(self, scenario_a_run):
        report, _ = scenario_a_run
        values = report['volume_contraction'].to_array()
        assert np.isfinite(values).any()
        assert np.all(values[np.isfinite(values)] < 1.0)

    def test_shared_time_axis(self, scenario_a_run):
        report, _ = scenario_a_run
        horizon = report['embedding'].horizon
        axis = tuple(np.arange(horizon - 1, 120))
        for key in ('matrices', 'volume_contraction', 'total_variance'):
            artifact = report[key]
            times = artifact.times if key == 'matrices' else artifact.values.times
            assert times == axis
        assert report['eigen'].steps.times == axis
        assert report['svd'].steps.times == axis


class TestProperties:

    def test_ordering(self, scenario_a_run):
        report, _ = scenario_a_run
        for _, pair in report['eigen'].steps.present():
            assert np.all(np.diff(pair.moduli) <= 1e-12)
        for _, result in report['svd'].steps.present():
            assert np.all(np.diff(result.d) <= 1e-12)

    def test_identities(self, scenario_a_run):
        report, _ = scenario_a_run
        eig, sv = report['eigen'].steps, report['svd'].steps
        vc, tv = report['volume_contraction'].values, report['total_variance'].values
        for i in range(len(eig)):
            if eig[i] is not None:
                assert vc[i] == pytest.approx(np.prod(eig[i].moduli), rel=1e-9)
            if sv[i] is not None:
                assert tv[i] == pytest.approx(np.sum(sv[i].d ** 2), rel=1e-9)

    def test_missing_propagation(self, scenario_a_run):
        """A time step without an S-map row is missing in every downstream stage."""
        report, _ = scenario_a_run
        coefficients = report['coefficients']
        fit = coefficients['B']
        entries = list(fit.rows.entries)
        entries[5] = None
        knocked_out = SMapResults(
            times=coefficients.times,
            fits=dict(coefficients.fits, B=SMapFit(model=fit.model, rows=TimeIndexed(fit.rows.times, entries))),
            skipped=dict(coefficients.skipped),
        )

        block = block_from_frame(scenario_a_frame(), 'censusdate').rescaled()
        config = RunConfig.from_dict(FAST_OPTIONS)
        artifacts = dict(report.artifacts, coefficients=knocked_out)
        problems = {}
        for key in ('matrices', 'eigen', 'svd', 'volume_contraction', 'total_variance'):
            artifacts[key], problems[key] = STAGES[key].run(block, config, artifacts, False)

        step_time = coefficients.times[5]
        assert artifacts['matrices'].matrices.missing_times() == [step_time]
        assert problems['matrices']
        assert artifacts['eigen'].steps.missing_times() == [step_time]
        assert artifacts['svd'].steps.missing_times() == [step_time]
        assert artifacts['volume_contraction'].values.missing_times() == [step_time]
        assert artifacts['total_variance'].values.missing_times() == [step_time]
        assert artifacts['eigen'].steps[4] is not None
        assert artifacts['eigen'].steps[6] is not None

    def test_determinism(self, scenario_a_run, tmp_path):
        _, first_store = scenario_a_run
        run(scenario_a_frame(), str(tmp_path), verbose=False, **FAST_OPTIONS)
        _assert_same_tables(_tables(first_store), _tables(tmp_path))


class TestResume:

    def test_rerun_recomputes_nothing(self, scenario_a_run):
        report, store_dir = scenario_a_run
        index_before = (store_dir / 'bundle.yaml').read_text()
        again = run(scenario_a_frame(), str(store_dir), verbose=False, **FAST_OPTIONS)
        assert {s.status for s in again.stages.values()} == {'skipped-cached'}
        assert (store_dir / 'bundle.yaml').read_text() == index_before
        assert again['causal_network'].drivers_of('B') == report['causal_network'].drivers_of('B')
        np.testing.assert_array_equal(
            again['volume_contraction'].to_array(), report['volume_contraction'].to_array(),
        )

    def test_interrupted_run_resumes(self, scenario_a_run, tmp_path):
        _, full_store = scenario_a_run
        partial = run(scenario_a_frame(), str(tmp_path), stages=['causal_network'],
                      verbose=False, **FAST_OPTIONS)
        assert list(partial.stages) == ['embedding', 'surrogates', 'causal_network']
        assert set(ResultStore(str(tmp_path)).keys()) == set(partial.stages)

        resumed = run(scenario_a_frame(), str(tmp_path), verbose=False, **FAST_OPTIONS)
        for key in ('embedding', 'surrogates', 'causal_network'):
            assert resumed.status(key) == 'skipped-cached'
        assert resumed.status('coefficients') == 'completed'
        _assert_same_tables(_tables(full_store), _tables(tmp_path))

    def test_changed_options_against_store(self, tmp_path):
        options = dict(FAST_OPTIONS, num_surr=20)
        run(scenario_a_frame(), str(tmp_path), stages=['surrogates'], verbose=False, **options)

        # Options of other stages leave cached stages valid
        report = run(scenario_a_frame(), str(tmp_path), stages=['surrogates'], verbose=False,
                     **dict(options, ridge_lambda=1e-3))
        assert report.status('surrogates') == 'skipped-cached'

        with pytest.raises(ConfigurationError, match='surrogates'):
            run(scenario_a_frame(), str(tmp_path), stages=['surrogates'], verbose=False,
                **dict(options, num_surr=10))

        report = run(scenario_a_frame(), str(tmp_path), stages=['surrogates'], verbose=False,
                     fresh=True, **dict(options, num_surr=10))
        assert report.status('surrogates') == 'completed'
        assert report['surrogates'].num_surr == 10


class TestScenarioB:
    """A constant variable is dropped; everything else completes."""

    def test_constant_variable_has_no_embedding(self, scenario_b_run):
        report, _ = scenario_b_run
        embedding = report['embedding']
        assert not embedding['D'].ok
        assert embedding['D'].reason
        assert embedding['A'].ok and embedding['B'].ok
        assert report.status('embedding') == 'partially-missing'

    def test_excluded_from_network(self, scenario_b_run):
        report, _ = scenario_b_run
        network = report['causal_network']
        for link in network.links:
            assert 'D' not in (link.cause, link.effect)
        assert ('D', 'A') in network.skipped
        assert ('A', 'D') in network.skipped
        assert 'D' not in report['surrogates']

    def test_rest_completes(self, scenario_b_run):
        report, _ = scenario_b_run
        assert 'D' not in report['coefficients']
        assert [v for v, _ in report['matrices'].layout if v == 'D'] == []
        assert np.isfinite(report['volume_contraction'].to_array()).any()
        assert report.status('total_variance') == 'completed'

    def test_missing_entry_stored_as_null_row(self, scenario_b_run):
        _, store_dir = scenario_b_run
        table = ResultStore(str(store_dir)).read('embedding')['']
        row = table.filter(pl.col('variable') == 'D').row(0, named=True)
        assert row['E'] is None
        assert row['rho'] is None
        assert row['reason']

    def test_cached_reload_keeps_missing(self, scenario_b_run):
        report, store_dir = scenario_b_run
        again = run(scenario_b_frame(), str(store_dir), verbose=False, silent=True, **FAST_OPTIONS)
        assert not again['embedding']['D'].ok
        assert again['causal_network'].skipped == report['causal_network'].skipped

    def test_constant_variable_reported_at_load(self, tmp_path):
        with pytest.warns(RuntimeWarning) as record:
            run(scenario_b_frame(), str(tmp_path), stages=['embedding'], verbose=False, **FAST_OPTIONS)
        messages = [str(w.message) for w in record]
        assert any('constant variable' in m and 'D' in m for m in messages)

    def test_silent_suppresses_warnings(self, tmp_path):
        with warnings.catch_warnings():
            warnings.simplefilter('error')
            report = run(scenario_b_frame(), str(tmp_path), stages=['embedding'],
                         verbose=False, silent=True, **FAST_OPTIONS)
        assert list(report.missing()) == ['embedding']
        assert len(report.missing()['embedding']) == 1


class TestInputErrors:

    def test_gap_fails_before_any_stage(self, tmp_path):
        df = scenario_a_frame().filter(pl.col('censusdate') != 50)
        with pytest.raises(DataFormatError, match='gap'):
            run(df, str(tmp_path / 'out'), verbose=False, **FAST_OPTIONS)
        assert not (tmp_path / 'out').exists()

    def test_bad_option(self, tmp_path):
        with pytest.raises(ConfigurationError, match='surrogate_method'):
            run(scenario_a_frame(), str(tmp_path / 'out'), verbose=False,
                **dict(FAST_OPTIONS, surrogate_method='twin'))
        assert not (tmp_path / 'out').exists()


class TestParallel:

    def test_workers_do_not_change_results(self, tmp_path):
        options = dict(FAST_OPTIONS, num_surr=20)
        run(scenario_a_frame(), str(tmp_path / 'seq'), stages=['causal_network'], verbose=False, **options)
        run(scenario_a_frame(), str(tmp_path / 'par'), stages=['causal_network'], verbose=False,
            **dict(options, n_jobs=2))
        keys = ['embedding', 'surrogates', 'causal_network']
        _assert_same_tables(_tables(tmp_path / 'seq', keys), _tables(tmp_path / 'par', keys))


class TestCLI:

    def test_main(self, tmp_path, monkeypatch):
        scenario_a_frame().write_parquet(tmp_path / 'community.parquet')
        (tmp_path / 'manifest.yaml').write_text(
            "paths:\n"
            "  observations: community.parquet\n"
            "  store: results\n"
            "options:\n"
            "  max_E: 3\n"
            "  num_surr: 10\n"
        )
        monkeypatch.setattr(sys, 'argv', ['dynstab', str(tmp_path), '--stages', 'surrogates', '-q'])
        main()
        store = ResultStore(str(tmp_path / 'results'))
        assert set(store.keys()) == {'embedding', 'surrogates'}
        assert (tmp_path / 'results' / 'embedding_skill.parquet').exists()
