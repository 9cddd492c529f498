import sys, os
src_path = os.path.join(os.path.dirname(os.path.abspath(__file__)), "..", "..")
sys.path.append(src_path)
import numpy as np
import pytest
import logging
from mlpca.model.mlpca import MLPCA, MLPCAResult, mlpca_c
from mlpca.model.svd import truncated_svd
from mlpca.data.simulator import Simulator
from mlpca.metrics import is_orthonormal, subspace_angles
from mlpca.errors import (MLPCAError, InvalidRankError, DimensionMismatchError, NonPositiveStdDevError,
                          ZeroStdDevError, InvalidDataError, MaxIterationsExceededError)

logger = logging.getLogger(__name__)


class TestMLPCA:

    data_path = None
    simulator = None
    X = None
    Xsd = None
    model_name = "mlpca_test00"

    @classmethod
    def setup_class(cls):
        logger.info("Running MLPCA Test Setup")
        cls.data_path = os.path.join(os.path.dirname(os.path.abspath(__file__)), "..", "..", "data")
        cls.simulator = Simulator(seed=42, rank=3, features_n=15, samples_n=40, signal_scale=2.0, sd_min=0.05,
                                  sd_max=1.0, verbose=False)
        data_df, sd_df = cls.simulator.get_data()
        cls.X = data_df.to_numpy()
        cls.Xsd = sd_df.to_numpy()

    def test_train(self):
        model = MLPCA(X=self.X, Xsd=self.Xsd, p=3)
        result = model.train()
        assert isinstance(result, MLPCAResult)
        assert result.ErrFlag == 0
        assert model.converged
        assert result.U.shape == (40, 3)
        assert result.S.shape == (3, 3)
        assert result.V.shape == (15, 3)
        assert result.Ssq > 0.0
        assert result.Ssq == result.ssq_list[-1]

    def test_orthonormal_bases(self):
        result = mlpca_c(X=self.X, Xsd=self.Xsd, p=3)
        assert is_orthonormal(result.U)
        assert is_orthonormal(result.V)

    def test_singular_values(self):
        result = mlpca_c(X=self.X, Xsd=self.Xsd, p=3)
        s = np.diag(result.S)
        assert np.allclose(result.S, np.diag(s))
        assert np.all(s >= 0.0)
        assert np.all(np.diff(s) <= 0.0)

    def test_result_keys(self):
        result = mlpca_c(X=self.X, Xsd=self.Xsd, p=2)
        assert result.keys() == ["U", "S", "V", "Ssq", "ErrFlag"]
        assert result["ErrFlag"] == 0
        assert result["U"] is result.U
        with pytest.raises(KeyError):
            result["MLX"]

    def test_full_rank_uniform_sd(self):
        rng = np.random.default_rng(7)
        X = rng.standard_normal(size=(8, 5))
        Xsd = np.ones(shape=X.shape)
        result = mlpca_c(X=X, Xsd=Xsd, p=5)
        _, s, _ = np.linalg.svd(X, full_matrices=False)
        assert result.ErrFlag == 0
        assert np.allclose(result.reconstruct(), X, atol=1e-8)
        assert np.allclose(np.diag(result.S), s, atol=1e-8)

    def test_full_rank_uniform_sd_wide(self):
        rng = np.random.default_rng(8)
        X = rng.standard_normal(size=(5, 9))
        result = mlpca_c(X=X, Xsd=np.full(X.shape, 0.5), p=5)
        assert np.allclose(result.reconstruct(), X, atol=1e-8)

    def test_uniform_sd_matches_svd_subspace(self):
        rng = np.random.default_rng(11)
        X = rng.standard_normal(size=(30, 12))
        Xsd = np.full(X.shape, 0.3)
        result = mlpca_c(X=X, Xsd=Xsd, p=2)
        U, s, V = truncated_svd(X, 2)
        assert np.max(subspace_angles(result.U, U)) < 1e-6
        assert np.max(subspace_angles(result.V, V)) < 1e-6
        assert np.allclose(np.diag(result.S), s, rtol=1e-6)

    def test_objective_decreasing(self):
        model = MLPCA(X=self.X, Xsd=self.Xsd, p=2)
        result = model.train()
        ssq = np.array(result.ssq_list)
        assert len(ssq) > 2
        checks = ssq[0::2]
        assert np.all(checks[1:] <= checks[:-1] * (1.0 + 1e-8))
        assert ssq[-1] <= ssq[0]

    def test_convergence_flag(self):
        model = MLPCA(X=self.X, Xsd=self.Xsd, p=3)
        result = model.train()
        ssq = result.ssq_list
        # convergence is only checked on odd iterations
        assert result.iterations % 2 == 1
        assert len(ssq) == result.iterations
        assert abs(ssq[-2] - ssq[-1]) / ssq[-1] < 1e-10

    def test_conv_limit(self):
        loose = MLPCA(X=self.X, Xsd=self.Xsd, p=3).train(conv_limit=1e-3)
        tight = MLPCA(X=self.X, Xsd=self.Xsd, p=3).train(conv_limit=1e-10)
        assert loose.iterations <= tight.iterations

    def test_max_iterations(self):
        model = MLPCA(X=self.X, Xsd=self.Xsd, p=3)
        with pytest.raises(MaxIterationsExceededError) as ex:
            model.train(max_iter=2)
        assert ex.value.kind == "MaxIterationsExceeded"
        assert ex.value.iterations == 3
        assert model.result is None
        assert not model.converged

    def test_optimized_matches_loop(self):
        result = MLPCA(X=self.X, Xsd=self.Xsd, p=2, optimized=True).train()
        result_loop = MLPCA(X=self.X, Xsd=self.Xsd, p=2, optimized=False).train()
        assert np.allclose(result.reconstruct(), result_loop.reconstruct(), atol=1e-6)
        assert result.Ssq == pytest.approx(result_loop.Ssq, rel=1e-6)

    def test_input_not_mutated(self):
        X = self.X.copy()
        Xsd = self.Xsd.copy()
        Xsd[0, 0] = np.nan
        mlpca_c(X=X, Xsd=Xsd, p=2)
        assert np.array_equal(X, self.X)
        assert np.isnan(Xsd[0, 0])

    def test_invalid_rank(self, monkeypatch):
        def no_svd(*args, **kwargs):
            raise AssertionError("SVD executed before validation")
        monkeypatch.setattr("mlpca.model.mlpca.truncated_svd", no_svd)
        with pytest.raises(InvalidRankError):
            mlpca_c(X=self.X, Xsd=self.Xsd, p=16)
        with pytest.raises(InvalidRankError):
            mlpca_c(X=self.X, Xsd=self.Xsd, p=0)
        with pytest.raises(InvalidRankError):
            mlpca_c(X=self.X, Xsd=self.Xsd, p=1.5)

    def test_dimension_mismatch(self):
        X = np.ones(shape=(10, 5))
        Xsd = np.ones(shape=(10, 4))
        with pytest.raises(DimensionMismatchError) as ex:
            mlpca_c(X=X, Xsd=Xsd, p=2)
        assert ex.value.kind == "DimensionMismatch"
        with pytest.raises(DimensionMismatchError):
            mlpca_c(X=np.ones(10), Xsd=np.ones(10), p=1)

    def test_zero_sd(self):
        Xsd = self.Xsd.copy()
        Xsd[3, 4] = 0.0
        with pytest.raises(ZeroStdDevError):
            mlpca_c(X=self.X, Xsd=Xsd, p=2)

    def test_negative_sd(self):
        Xsd = self.Xsd.copy()
        Xsd[3, 4] = -0.1
        with pytest.raises(NonPositiveStdDevError):
            mlpca_c(X=self.X, Xsd=Xsd, p=2)
        Xsd[3, 4] = np.inf
        with pytest.raises(NonPositiveStdDevError):
            mlpca_c(X=self.X, Xsd=Xsd, p=2)

    def test_errors_are_value_errors(self):
        Xsd = self.Xsd.copy()
        Xsd[0, 0] = 0.0
        with pytest.raises(ValueError):
            MLPCA(X=self.X, Xsd=Xsd, p=2)
        with pytest.raises(MLPCAError):
            MLPCA(X=self.X, Xsd=Xsd, p=2)

    def test_invalid_data(self):
        X = self.X.copy()
        X[1, 1] = np.inf
        with pytest.raises(InvalidDataError):
            mlpca_c(X=X, Xsd=self.Xsd, p=2)
        with pytest.raises(InvalidDataError):
            mlpca_c(X=self.X, Xsd=np.full(self.X.shape, np.nan), p=2)

    def test_missing_variance(self):
        Xsd = self.Xsd.copy()
        Xsd[2, 2] = np.nan
        Xsd[5, 7] = np.nan
        model = MLPCA(X=self.X, Xsd=Xsd, p=2)
        var_max = np.nanmax(np.square(Xsd))
        assert model.missing.sum() == 2
        assert model.VarX[2, 2] == pytest.approx(var_max * 1000)
        assert model.VarX[5, 7] == pytest.approx(var_max * 1000)
        assert np.all(model.VarX > 0.0)

    def test_missing_measurement(self):
        X = self.X.copy()
        X[0, 0] = np.nan
        model = MLPCA(X=X, Xsd=self.Xsd, p=2)
        result = model.train()
        assert model.missing[0, 0]
        assert np.all(np.isfinite(result.reconstruct()))

    def test_missing_entry_negligible(self):
        i, j = 4, 6
        delta = 25.0
        X_shift = self.X.copy()
        X_shift[i, j] += delta

        observed = mlpca_c(X=self.X, Xsd=self.Xsd, p=3).reconstruct()
        observed_shift = mlpca_c(X=X_shift, Xsd=self.Xsd, p=3).reconstruct()

        Xsd_missing = self.Xsd.copy()
        Xsd_missing[i, j] = np.nan
        missing = mlpca_c(X=self.X, Xsd=Xsd_missing, p=3).reconstruct()
        missing_shift = mlpca_c(X=X_shift, Xsd=Xsd_missing, p=3).reconstruct()

        observed_influence = np.max(np.abs(observed_shift - observed))
        missing_influence = np.max(np.abs(missing_shift - missing))
        assert missing_influence < 0.05 * observed_influence

    def test_beats_unweighted_svd(self):
        wins = 0
        trials = 10
        for seed in range(trials):
            sim = Simulator(seed=seed, rank=2, features_n=12, samples_n=30, signal_scale=1.0, sd_min=0.01,
                            sd_max=1.0, verbose=False)
            data_df, sd_df = sim.get_data()
            model = MLPCA(X=data_df.to_numpy(), Xsd=sd_df.to_numpy(), p=2)
            model.train()
            comparison = sim.compare(model)
            if comparison["mlpca_wssq"] < comparison["svd_wssq"]:
                wins += 1
        assert wins >= 0.9 * trials

    def test_save(self):
        model = MLPCA(X=self.X, Xsd=self.Xsd, p=3)
        model.train()
        save_path = os.path.join(self.data_path, "test_output")
        header = [f"Feature {i}" for i in range(1, 16)]
        saved_file = model.save(model_name=self.model_name, output_directory=save_path, header=header)
        assert str(saved_file) == str(save_path)
        assert os.path.exists(os.path.join(save_path, f"{self.model_name}-U.csv"))
        assert os.path.exists(os.path.join(save_path, f"{self.model_name}-metadata.json"))
        saved_file_pkl = model.save(model_name=self.model_name, output_directory=save_path, pickle_model=True)
        assert str(saved_file_pkl) == str(os.path.join(save_path, f"{self.model_name}.pkl"))

    def test_save_relative_path(self):
        model = MLPCA(X=self.X, Xsd=self.Xsd, p=3)
        model.train()
        assert model.save(model_name=self.model_name, output_directory="relative/path") is None

    def test_load(self):
        save_path = os.path.join(self.data_path, "test_output")
        save_file = os.path.join(save_path, f"{self.model_name}.pkl")
        model = MLPCA.load(file_path=save_file)
        assert model is not None
        assert model.result.ErrFlag == 0
        assert model.U.shape == (40, 3)
