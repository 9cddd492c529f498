import logging
import pandas as pd
import numpy as np
from scipy import stats
import plotly.graph_objects as go
from plotly.subplots import make_subplots
from mlpca.data.datahandler import DataHandler
from mlpca.model.mlpca import MLPCA
from mlpca.model.batch_mlpca import BatchMLPCA

logging.basicConfig(format='%(asctime)s - %(message)s', datefmt='%d-%b-%y %H:%M:%S', level=logging.INFO)
logger = logging.getLogger(__name__)


class ModelAnalysis:
    """
    Class for running model analysis and generating plots.
    A collection of model statistic methods and plot generation functions.

    Parameters
    ----------
    datahandler : DataHandler
        The datahandler instance used for processing the input and standard deviation datasets used by the model.
    model : MLPCA
        A trained MLPCA model with output used for calculating model statistics and generating plots.
    """
    def __init__(self,
                 datahandler: DataHandler,
                 model: MLPCA
                 ):
        """
        Constructor method
        """
        self.dh = datahandler
        self.model = model
        self.statistics = None

    def _feature(self, feature_idx: int = None, feature_name: str = None):
        if feature_idx is not None:
            if feature_idx < 0 or feature_idx >= len(self.dh.features):
                logger.info(f"Invalid feature_idx provided, must be between 0 and {len(self.dh.features) - 1}")
                return None, None
            return feature_idx, self.dh.features[feature_idx]
        if feature_name is not None:
            if feature_name not in self.dh.features:
                logger.info(f"Invalid feature_name provided, must be one of {self.dh.features}")
                return None, None
            return self.dh.features.index(feature_name), feature_name
        logger.info("Either feature_idx or feature_name must be provided.")
        return None, None

    def scaled_residuals(self):
        """
        The residuals of the model estimate divided by the measurement error standard deviations. Missing entries are
        NaN.
        """
        X = self.dh.input_data_df.to_numpy(dtype=np.float64)
        sd = self.dh.sd_data_df.to_numpy(dtype=np.float64)
        return (X - self.model.MLX) / sd

    def calculate_statistics(self):
        """
        Calculate general statistics from the results of the MLPCA model run.

        Will generate a pd.DataFrame with a set of metrics for each feature, accessible as .statistics. The metrics
        focus on the scaled residuals, which for a correct error model and rank should be approximately standard
        normal.
        """
        statistics = {"Features": [], "r2": [], "Slope": [], "Intercept": [], "Weighted SSQ": [],
                      "Scaled Residual Mean": [], "Scaled Residual SD": [],
                      "Shapiro Normal Residuals": [], "Shapiro PValue": []}
        X = self.dh.input_data_df.to_numpy(dtype=np.float64)
        scaled = self.scaled_residuals()
        for feature_idx, x_label in enumerate(self.dh.features):
            observed = ~np.isnan(scaled[:, feature_idx])
            observed_data = X[observed, feature_idx]
            predicted_data = self.model.MLX[observed, feature_idx]
            i_scaled = scaled[observed, feature_idx]

            regression = stats.linregress(observed_data, predicted_data)
            if len(i_scaled) >= 3:
                _, shap_p = stats.shapiro(i_scaled)
            else:
                shap_p = np.nan

            statistics["Features"].append(x_label)
            statistics["r2"].append(regression.rvalue ** 2)
            statistics["Slope"].append(regression.slope)
            statistics["Intercept"].append(regression.intercept)
            statistics["Weighted SSQ"].append(float(np.sum(np.square(i_scaled))))
            statistics["Scaled Residual Mean"].append(float(np.mean(i_scaled)))
            statistics["Scaled Residual SD"].append(float(np.std(i_scaled, ddof=1)) if len(i_scaled) > 1 else np.nan)
            statistics["Shapiro PValue"].append(shap_p)
            statistics["Shapiro Normal Residuals"].append("Yes" if shap_p >= 0.05 else "No")

        self.statistics = pd.DataFrame(data=statistics)
        return self.statistics

    def plot_convergence(self, show: bool = True):
        """
        Plot the objective function, the weighted residual sum of squares, at each ALS iteration. Even and odd
        iterations fit different orientations of the problem, so the curve is only expected to settle across pairs of
        iterations.
        """
        ssq = self.model.ssq_list
        ssq_fig = go.Figure()
        ssq_fig.add_trace(go.Scatter(x=list(range(1, len(ssq) + 1)), y=ssq, mode='lines+markers', name="Ssq"))
        ssq_fig.update(layout_title_text=f"MLPCA Ssq vs Iterations. Rank: {self.model.p}")
        ssq_fig.update_layout(width=1200, height=600, hovermode='x')
        ssq_fig.update_xaxes(title_text="Iterations")
        ssq_fig.update_yaxes(title_text="Ssq", type="log")
        if show:
            ssq_fig.show()
            return None
        return ssq_fig

    def plot_residual_histogram(self,
                                feature_idx: int = None,
                                feature_name: str = None,
                                abs_threshold: float = 3.0,
                                show: bool = True
                                ):
        """
        Create a plot of a histogram of the scaled residuals for a specific feature.

        Parameters
        ----------
        feature_idx : int, optional
            The index of the feature to plot.
        feature_name : str, optional
            The name of the feature to plot.
        abs_threshold : float
            The function generates a list of residuals that exceed this limit, the absolute value of the limit.
        show : bool
            If True, the plot will be displayed. Default is True.
        """
        feature_idx, feature = self._feature(feature_idx=feature_idx, feature_name=feature_name)
        if feature is None:
            return None
        residuals_data = self.scaled_residuals()[:, feature_idx]

        residual_fig = make_subplots(rows=2, cols=1, shared_xaxes=True, row_heights=[0.2, 0.8], vertical_spacing=0.01,
                                     subplot_titles=["Scaled Residuals", None])
        residual_fig.add_trace(go.Histogram(x=residuals_data, histnorm='probability density', name='Histogram'),
                               row=2, col=1)
        residual_fig.add_trace(go.Box(x=residuals_data, boxmean=True, name="Dist"), row=1, col=1)
        normal_x = np.linspace(-4, 4, 200)
        residual_fig.add_trace(go.Scatter(x=normal_x, y=stats.norm.pdf(normal_x), mode='lines', name='Normal'),
                               row=2, col=1)
        residual_fig.update_layout(
            title=f"Scaled Residual Histogram for {feature}",
            yaxis2_title="Density",
            width=1200,
            height=600,
            showlegend=True,
            hovermode='x unified'
        )
        if show:
            residual_fig.show()
            return None
        residuals_df = pd.DataFrame(residuals_data, index=self.dh.input_data_df.index, columns=[feature])
        if abs_threshold != -1:
            residuals_df = residuals_df[residuals_df[feature].abs() > abs_threshold]
        return residual_fig, residuals_df

    def plot_estimated_observed(self,
                                feature_idx: int = None,
                                feature_name: str = None,
                                show: bool = True):
        """
        Create a plot that shows the estimated values of a feature vs the observed values.

        Parameters
        ----------
        feature_idx : int, optional
            The index of the feature to plot.
        feature_name : str, optional
            The name of the feature to plot.
        show : bool
            If True, the plot will be displayed. Default is True.
        """
        feature_idx, feature = self._feature(feature_idx=feature_idx, feature_name=feature_name)
        if feature is None:
            return None
        observed_data = self.dh.input_data_df[feature].to_numpy(dtype=np.float64)
        predicted_data = self.model.MLX[:, feature_idx]
        mask = ~np.isnan(observed_data)

        xy_plot = go.Figure()
        xy_plot.add_trace(go.Scatter(x=observed_data[mask], y=predicted_data[mask], mode='markers', name="Data"))
        one_to_one = [np.min(observed_data[mask]), np.max(observed_data[mask])]
        xy_plot.add_trace(go.Scatter(x=one_to_one, y=one_to_one, line=dict(color='blue', width=1),
                                     name='One-to-One'))
        xy_plot.update_layout(
            title=f"Observed/Estimated Scatter Plot - {feature}",
            width=800,
            height=600,
            xaxis_title="Observed",
            yaxis_title="Estimated",
            hovermode='x'
        )
        if show:
            xy_plot.show()
            return None
        return xy_plot


class BatchAnalysis:
    """
    Class for comparing the models of a batch MLPCA run.

    Parameters
    ----------
    batch : BatchMLPCA
        A completed batch of MLPCA models.
    """
    def __init__(self, batch: BatchMLPCA):
        self.batch = batch

    def plot_ssq(self, show: bool = True):
        """
        Plot the weighted residual sum of squares of each rank in the batch. Failed ranks are not shown.

        For a correct error model the expected Ssq of a rank p model is approximately the degrees of freedom,
        (M - p)(N - p), which is shown for reference.
        """
        m, n = self.batch.X.shape
        ranks = []
        ssq = []
        for p, model in zip(self.batch.ranks, self.batch.results):
            if model is not None:
                ranks.append(p)
                ssq.append(model.Ssq)
        ssq_fig = go.Figure()
        ssq_fig.add_trace(go.Scatter(x=ranks, y=ssq, mode='lines+markers', name="Ssq"))
        ssq_fig.add_trace(go.Scatter(x=ranks, y=[(m - p) * (n - p) for p in ranks], mode='lines',
                                     line=dict(dash='dash'), name="Degrees of Freedom"))
        ssq_fig.update(layout_title_text="Batch MLPCA Ssq vs Rank")
        ssq_fig.update_layout(width=800, height=600, hovermode='x')
        ssq_fig.update_xaxes(title_text="Rank")
        ssq_fig.update_yaxes(title_text="Ssq", type="log")
        if show:
            ssq_fig.show()
            return None
        return ssq_fig
