"""
Tabular Models Module for Campaign Analyst

Uniform train/predict adapters around the scikit-learn classifiers compared
on the bank marketing data:

- Neural network (multilayer perceptron, one-hot inputs)
- Logistic regression (binomial logit with dummy-coded categoricals)
- Quadratic discriminant analysis
- k-nearest neighbours (standardised Euclidean distance)
- Naive Bayes (Gaussian numeric / multinomial categorical predictors)
- Support vector machine (RBF kernel)
- Classification tree

The bagged tree ensemble lives in ``ensemble_models``. Every adapter is an
independent class satisfying the ``ModelAdapter`` protocol: there is no base
class. Each adapter validates its hyperparameters with a pydantic model and
reports failures as ``InvalidConfig`` or ``ConvergenceError`` with the adapter
name and stage attached, chaining the scikit-learn exception.
"""

import logging
import threading
import warnings
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Literal, Mapping, Optional, Protocol, Tuple, Type, TypeVar, Union, runtime_checkable

import numpy as np
from pydantic import BaseModel, ConfigDict, Field, ValidationError
from scipy.special import logsumexp
from sklearn.compose import ColumnTransformer
from sklearn.discriminant_analysis import QuadraticDiscriminantAnalysis
from sklearn.exceptions import ConvergenceWarning
from sklearn.linear_model import LogisticRegression
from sklearn.naive_bayes import CategoricalNB, GaussianNB
from sklearn.neighbors import KNeighborsClassifier
from sklearn.neural_network import MLPClassifier
from sklearn.pipeline import Pipeline
from sklearn.preprocessing import MinMaxScaler, OneHotEncoder, StandardScaler
from sklearn.svm import SVC
from sklearn.tree import DecisionTreeClassifier

from campaign_analyst.exceptions import ConvergenceError, InvalidArgument, InvalidConfig
from campaign_analyst.utils.preprocessing import Encoding
from campaign_analyst.utils.validation import check_training_labels, validate_feature_matrix

logger = logging.getLogger(__name__)

ConfigT = TypeVar("ConfigT", bound=BaseModel)

# warnings.catch_warnings swaps process-wide filters, so fits that capture
# warnings run one at a time when pool workers are threads
_WARNINGS_LOCK = threading.Lock()


# =============================================================================
# DATA MODEL
# =============================================================================

@dataclass(frozen=True)
class Prediction:
    """Predicted 0/1 labels plus an optional (n, 2) class score matrix."""
    labels: np.ndarray
    scores: Optional[np.ndarray] = None

    @property
    def positive_scores(self) -> np.ndarray:
        """Score of the positive class, as consumed by the ROC computation."""
        if self.scores is None:
            raise InvalidArgument("Prediction carries no class scores")
        return self.scores[:, 1]


@dataclass
class TrainedModel:
    """Artifact produced by an adapter's ``train``; owned by that adapter."""
    adapter: str
    estimator: Any
    config: BaseModel
    feature_names: List[str]
    categorical_mask: np.ndarray
    classes: List[int]
    diagnostics: Dict[str, Any] = field(default_factory=dict)

    @property
    def n_features(self) -> int:
        return len(self.feature_names)


@runtime_checkable
class ModelAdapter(Protocol):
    """Capability set shared by every classifier in the comparison."""

    name: str
    label: str
    encoding: Encoding

    def train(
        self,
        X: np.ndarray,
        y: np.ndarray,
        config: Optional[Union[BaseModel, Mapping[str, Any]]] = None,
        categorical_mask: Optional[np.ndarray] = None,
        feature_names: Optional[List[str]] = None,
    ) -> TrainedModel:
        ...

    def predict(self, model: TrainedModel, X: np.ndarray) -> Prediction:
        ...


# =============================================================================
# ADAPTER CONFIGURATIONS
# =============================================================================

class AdapterConfig(BaseModel):
    """Common settings of the adapter hyperparameter models."""
    model_config = ConfigDict(extra="forbid", frozen=True)


class NeuralNetConfig(AdapterConfig):
    """Pattern-recognition network: one hidden layer of 10 units."""
    hidden_units: int = Field(default=10, ge=1)
    solver: Literal["lbfgs", "adam", "sgd"] = "lbfgs"
    max_iter: int = Field(default=1000, ge=1)
    alpha: float = Field(default=1e-4, ge=0.0)
    random_state: Optional[int] = 0
    strict_convergence: bool = False


class LogisticRegressionConfig(AdapterConfig):
    """Unpenalised binomial logit."""
    max_iter: int = Field(default=1000, ge=1)
    tol: float = Field(default=1e-6, gt=0.0)
    strict_convergence: bool = False


class DiscriminantConfig(AdapterConfig):
    """Quadratic discriminant analysis."""
    reg_param: float = Field(default=0.0, ge=0.0, le=1.0)


class KNNConfig(AdapterConfig):
    """Nearest-neighbour classifier."""
    n_neighbors: int = Field(default=1, ge=1)
    metric: Literal["seuclidean", "euclidean", "cityblock", "chebyshev", "minkowski", "cosine", "hamming"] = "seuclidean"


class NaiveBayesConfig(AdapterConfig):
    """Normal densities for numeric, multivariate multinomial for categorical predictors."""
    var_smoothing: float = Field(default=1e-9, ge=0.0)
    alpha: float = Field(default=1.0, gt=0.0)


class SVMConfig(AdapterConfig):
    """RBF support vector machine; sigma is the kernel scale on autoscaled data."""
    sigma: float = Field(default=1.0, gt=0.0)
    C: float = Field(default=1.0, gt=0.0)
    max_iter: int = Field(default=30000, ge=1)
    autoscale: bool = True
    strict_convergence: bool = True

    @property
    def gamma(self) -> float:
        return 1.0 / (2.0 * self.sigma ** 2)


class DecisionTreeConfig(AdapterConfig):
    """Classification tree; a node needs min_parent observations to be split."""
    min_parent: int = Field(default=10, ge=2)
    criterion: Literal["gini", "entropy", "log_loss"] = "gini"
    random_state: Optional[int] = 0


# =============================================================================
# SHARED HELPERS
# =============================================================================

def resolve_config(
    config_cls: Type[ConfigT],
    config: Optional[Union[BaseModel, Mapping[str, Any]]],
    model: str,
) -> ConfigT:
    """Coerce None, a mapping or a config instance into ``config_cls``."""
    if config is None:
        return config_cls()
    if isinstance(config, config_cls):
        return config
    try:
        payload = config.model_dump() if isinstance(config, BaseModel) else dict(config)
        return config_cls.model_validate(payload)
    except ValidationError as exc:
        raise InvalidConfig(f"Invalid hyperparameters: {exc}", model=model, stage="configure") from exc


def prepare_training(
    X: np.ndarray,
    y: np.ndarray,
    model: str,
    categorical_mask: Optional[np.ndarray],
    feature_names: Optional[List[str]],
) -> Tuple[np.ndarray, np.ndarray, np.ndarray, List[str], List[int]]:
    """Validate training inputs and fill in defaults for mask and names."""
    X = np.asarray(X, dtype=np.float64)
    y = np.asarray(y).astype(int)
    validate_feature_matrix(X, y)
    classes = check_training_labels(y, model)

    if categorical_mask is None:
        categorical_mask = np.zeros(X.shape[1], dtype=bool)
    categorical_mask = np.asarray(categorical_mask, dtype=bool)
    if categorical_mask.shape != (X.shape[1],):
        raise InvalidArgument(
            f"Categorical mask has shape {categorical_mask.shape}, expected ({X.shape[1]},)"
        )

    if feature_names is None:
        feature_names = [f"x{i}" for i in range(X.shape[1])]
    if len(feature_names) != X.shape[1]:
        raise InvalidArgument(f"Got {len(feature_names)} feature names for {X.shape[1]} columns")

    return X, y, categorical_mask, list(feature_names), classes


def check_prediction_input(model: TrainedModel, X: np.ndarray) -> np.ndarray:
    """Validate a prediction matrix against the trained model's width."""
    X = np.asarray(X, dtype=np.float64)
    validate_feature_matrix(X)
    if X.shape[1] != model.n_features:
        raise InvalidArgument(
            f"Model '{model.adapter}' was trained on {model.n_features} features, got {X.shape[1]}"
        )
    return X


def fit_estimator(estimator: Any, X: np.ndarray, y: np.ndarray, model: str, strict_convergence: bool = True) -> Any:
    """
    Fit a scikit-learn estimator, translating its failures.

    ValueError becomes InvalidConfig. ConvergenceWarning becomes
    ConvergenceError when ``strict_convergence`` is set and is logged
    otherwise. The fit holds a process-wide lock while the warning filters
    are swapped, so concurrent fits on a threading pool are serialised;
    process-based pools are unaffected.
    """
    with _WARNINGS_LOCK, warnings.catch_warnings(record=True) as caught:
        warnings.simplefilter("error" if strict_convergence else "always", ConvergenceWarning)
        try:
            estimator.fit(X, y)
        except ConvergenceWarning as exc:
            raise ConvergenceError(f"Optimiser did not converge: {exc}", model=model, stage="train") from exc
        except ValueError as exc:
            raise InvalidConfig(f"Estimator rejected the training data: {exc}", model=model, stage="train") from exc

    for warning in caught:
        logger.warning(f"[{model}] {warning.category.__name__}: {warning.message}")
    return estimator


def _column_indices(mask: np.ndarray) -> Tuple[List[int], List[int]]:
    """(categorical indices, numeric indices) of a categorical mask."""
    return np.flatnonzero(mask).tolist(), np.flatnonzero(~mask).tolist()


# =============================================================================
# ADAPTERS
# =============================================================================

class NeuralNetAdapter:
    """Single hidden layer perceptron on one-hot inputs scaled to [-1, 1]."""

    name = "neural_net"
    label = "Neural Net"
    encoding = Encoding.ONE_HOT

    def train(self, X, y, config=None, categorical_mask=None, feature_names=None) -> TrainedModel:
        cfg = resolve_config(NeuralNetConfig, config, self.name)
        X, y, categorical_mask, feature_names, classes = prepare_training(
            X, y, self.name, categorical_mask, feature_names
        )
        estimator = Pipeline([
            ("scaler", MinMaxScaler(feature_range=(-1, 1))),
            ("network", MLPClassifier(
                hidden_layer_sizes=(cfg.hidden_units,),
                solver=cfg.solver,
                alpha=cfg.alpha,
                max_iter=cfg.max_iter,
                random_state=cfg.random_state,
            )),
        ])
        fit_estimator(estimator, X, y, self.name, cfg.strict_convergence)
        network = estimator.named_steps["network"]
        return TrainedModel(
            adapter=self.name,
            estimator=estimator,
            config=cfg,
            feature_names=feature_names,
            categorical_mask=categorical_mask,
            classes=classes,
            diagnostics={"n_iter": int(network.n_iter_), "loss": float(network.loss_)},
        )

    def predict(self, model: TrainedModel, X) -> Prediction:
        X = check_prediction_input(model, X)
        scores = model.estimator.predict_proba(X)
        # network output rounded to the nearest class, ties to "yes"
        return Prediction(labels=(scores[:, 1] >= 0.5).astype(int), scores=scores)


class LogisticRegressionAdapter:
    """
    Binomial logit on ordinal codes.

    Categorical codes are expanded to dummy variables with the first level as
    reference, so the fitted model matches a GLM with categorical predictors.
    """

    name = "logistic_regression"
    label = "Logistic Regression"
    encoding = Encoding.ORDINAL_CODES

    def train(self, X, y, config=None, categorical_mask=None, feature_names=None) -> TrainedModel:
        cfg = resolve_config(LogisticRegressionConfig, config, self.name)
        X, y, categorical_mask, feature_names, classes = prepare_training(
            X, y, self.name, categorical_mask, feature_names
        )
        categorical, numeric = _column_indices(categorical_mask)
        design = ColumnTransformer([
            ("dummies", OneHotEncoder(drop="first", handle_unknown="ignore", sparse_output=False), categorical),
            ("numeric", StandardScaler(), numeric),
        ])
        estimator = Pipeline([
            ("design", design),
            ("logit", LogisticRegression(penalty=None, solver="lbfgs", max_iter=cfg.max_iter, tol=cfg.tol)),
        ])
        fit_estimator(estimator, X, y, self.name, cfg.strict_convergence)
        return TrainedModel(
            adapter=self.name,
            estimator=estimator,
            config=cfg,
            feature_names=feature_names,
            categorical_mask=categorical_mask,
            classes=classes,
            diagnostics={"n_coefficients": int(estimator.named_steps["logit"].coef_.size)},
        )

    def predict(self, model: TrainedModel, X) -> Prediction:
        X = check_prediction_input(model, X)
        with _WARNINGS_LOCK, warnings.catch_warnings():
            # unseen categories map onto the reference level
            warnings.filterwarnings("ignore", message=".*unknown categories.*", category=UserWarning)
            scores = model.estimator.predict_proba(X)
        return Prediction(labels=(scores[:, 1] > 0.5).astype(int), scores=scores)


class DiscriminantAnalysisAdapter:
    """Quadratic discriminant analysis; every class covariance must be full rank."""

    name = "discriminant_analysis"
    label = "Discriminant Analysis"
    encoding = Encoding.ORDINAL_CODES

    def train(self, X, y, config=None, categorical_mask=None, feature_names=None) -> TrainedModel:
        cfg = resolve_config(DiscriminantConfig, config, self.name)
        X, y, categorical_mask, feature_names, classes = prepare_training(
            X, y, self.name, categorical_mask, feature_names
        )
        if cfg.reg_param == 0.0:
            for cls in classes:
                members = X[y == cls]
                rank = np.linalg.matrix_rank(members - members.mean(axis=0)) if len(members) > 1 else 0
                if rank < X.shape[1]:
                    raise InvalidConfig(
                        f"Covariance of class {cls} is singular (rank {rank} < {X.shape[1]} features); "
                        "a zero-variance or collinear predictor prevents quadratic discriminant analysis",
                        model=self.name,
                        stage="train",
                    )

        estimator = QuadraticDiscriminantAnalysis(reg_param=cfg.reg_param)
        fit_estimator(estimator, X, y, self.name)
        return TrainedModel(
            adapter=self.name,
            estimator=estimator,
            config=cfg,
            feature_names=feature_names,
            categorical_mask=categorical_mask,
            classes=classes,
        )

    def predict(self, model: TrainedModel, X) -> Prediction:
        X = check_prediction_input(model, X)
        return Prediction(labels=model.estimator.predict(X).astype(int), scores=model.estimator.predict_proba(X))


class KNNAdapter:
    """k-nearest neighbours; the standardised Euclidean metric scales by training variances."""

    name = "knn"
    label = "k-nearest Neighbors"
    encoding = Encoding.ORDINAL_CODES

    def train(self, X, y, config=None, categorical_mask=None, feature_names=None) -> TrainedModel:
        cfg = resolve_config(KNNConfig, config, self.name)
        X, y, categorical_mask, feature_names, classes = prepare_training(
            X, y, self.name, categorical_mask, feature_names
        )
        if cfg.n_neighbors > len(y):
            raise InvalidConfig(
                f"n_neighbors={cfg.n_neighbors} exceeds {len(y)} training observations",
                model=self.name,
                stage="train",
            )

        metric_params = None
        if cfg.metric == "seuclidean":
            variances = X.var(axis=0, ddof=1) if len(X) > 1 else np.ones(X.shape[1])
            variances[variances == 0] = 1.0
            metric_params = {"V": variances}

        estimator = KNeighborsClassifier(
            n_neighbors=cfg.n_neighbors,
            metric=cfg.metric,
            metric_params=metric_params,
        )
        fit_estimator(estimator, X, y, self.name)
        return TrainedModel(
            adapter=self.name,
            estimator=estimator,
            config=cfg,
            feature_names=feature_names,
            categorical_mask=categorical_mask,
            classes=classes,
        )

    def predict(self, model: TrainedModel, X) -> Prediction:
        X = check_prediction_input(model, X)
        return Prediction(labels=model.estimator.predict(X).astype(int), scores=model.estimator.predict_proba(X))


@dataclass
class _MixedNaiveBayes:
    """Gaussian and categorical naive Bayes over disjoint column sets."""
    numeric: List[int]
    categorical: List[int]
    gaussian: Optional[GaussianNB]
    multinomial: Optional[CategoricalNB]
    unseen_codes: Optional[np.ndarray]

    def joint_log_likelihood(self, X: np.ndarray) -> np.ndarray:
        parts = []
        log_prior = None
        if self.gaussian is not None:
            parts.append(self.gaussian.predict_joint_log_proba(X[:, self.numeric]))
            log_prior = np.log(self.gaussian.class_prior_)
        if self.multinomial is not None:
            # codes not seen in training share the reserved smoothed slot
            codes = np.minimum(X[:, self.categorical].astype(int), self.unseen_codes)
            parts.append(self.multinomial.predict_joint_log_proba(codes))
            log_prior = self.multinomial.class_log_prior_
        # each part already contains the class prior once
        return sum(parts) - (len(parts) - 1) * log_prior

    def predict_proba(self, X: np.ndarray) -> np.ndarray:
        jll = self.joint_log_likelihood(X)
        return np.exp(jll - logsumexp(jll, axis=1, keepdims=True))


class NaiveBayesAdapter:
    """Naive Bayes with per-predictor distributions chosen by column kind."""

    name = "naive_bayes"
    label = "Naive Bayes"
    encoding = Encoding.ORDINAL_CODES

    def train(self, X, y, config=None, categorical_mask=None, feature_names=None) -> TrainedModel:
        cfg = resolve_config(NaiveBayesConfig, config, self.name)
        X, y, categorical_mask, feature_names, classes = prepare_training(
            X, y, self.name, categorical_mask, feature_names
        )
        categorical, numeric = _column_indices(categorical_mask)

        gaussian = None
        if numeric:
            gaussian = fit_estimator(GaussianNB(var_smoothing=cfg.var_smoothing), X[:, numeric], y, self.name)

        multinomial = None
        unseen_codes = None
        if categorical:
            codes = X[:, categorical]
            if np.any(codes < 0) or np.any(codes != np.round(codes)):
                raise InvalidConfig(
                    "Categorical predictors must hold non-negative integer codes",
                    model=self.name,
                    stage="train",
                )
            unseen_codes = codes.max(axis=0).astype(int) + 1
            multinomial = fit_estimator(
                CategoricalNB(alpha=cfg.alpha, min_categories=unseen_codes + 1),
                codes.astype(int),
                y,
                self.name,
            )

        estimator = _MixedNaiveBayes(numeric, categorical, gaussian, multinomial, unseen_codes)
        return TrainedModel(
            adapter=self.name,
            estimator=estimator,
            config=cfg,
            feature_names=feature_names,
            categorical_mask=categorical_mask,
            classes=classes,
            diagnostics={"n_numeric": len(numeric), "n_categorical": len(categorical)},
        )

    def predict(self, model: TrainedModel, X) -> Prediction:
        X = check_prediction_input(model, X)
        scores = model.estimator.predict_proba(X)
        return Prediction(labels=np.argmax(scores, axis=1).astype(int), scores=scores)


class SVMAdapter:
    """RBF support vector machine on standardised predictors."""

    name = "svm"
    label = "Support VM"
    encoding = Encoding.ORDINAL_CODES

    def train(self, X, y, config=None, categorical_mask=None, feature_names=None) -> TrainedModel:
        cfg = resolve_config(SVMConfig, config, self.name)
        X, y, categorical_mask, feature_names, classes = prepare_training(
            X, y, self.name, categorical_mask, feature_names
        )
        steps = [("scaler", StandardScaler())] if cfg.autoscale else []
        steps.append(("svc", SVC(kernel="rbf", gamma=cfg.gamma, C=cfg.C, max_iter=cfg.max_iter)))
        estimator = Pipeline(steps)
        fit_estimator(estimator, X, y, self.name, cfg.strict_convergence)
        return TrainedModel(
            adapter=self.name,
            estimator=estimator,
            config=cfg,
            feature_names=feature_names,
            categorical_mask=categorical_mask,
            classes=classes,
            diagnostics={"n_support_vectors": int(estimator.named_steps["svc"].n_support_.sum())},
        )

    def predict(self, model: TrainedModel, X) -> Prediction:
        X = check_prediction_input(model, X)
        distance = model.estimator.decision_function(X)
        return Prediction(
            labels=(distance > 0).astype(int),
            scores=np.column_stack([-distance, distance]),
        )


class DecisionTreeAdapter:
    """Single classification tree."""

    name = "decision_tree"
    label = "Decision Trees"
    encoding = Encoding.ORDINAL_CODES

    def train(self, X, y, config=None, categorical_mask=None, feature_names=None) -> TrainedModel:
        cfg = resolve_config(DecisionTreeConfig, config, self.name)
        X, y, categorical_mask, feature_names, classes = prepare_training(
            X, y, self.name, categorical_mask, feature_names
        )
        estimator = DecisionTreeClassifier(
            criterion=cfg.criterion,
            min_samples_split=cfg.min_parent,
            random_state=cfg.random_state,
        )
        fit_estimator(estimator, X, y, self.name)
        return TrainedModel(
            adapter=self.name,
            estimator=estimator,
            config=cfg,
            feature_names=feature_names,
            categorical_mask=categorical_mask,
            classes=classes,
            diagnostics={"depth": int(estimator.get_depth()), "n_leaves": int(estimator.get_n_leaves())},
        )

    def predict(self, model: TrainedModel, X) -> Prediction:
        X = check_prediction_input(model, X)
        scores = model.estimator.predict_proba(X)
        return Prediction(labels=np.argmax(scores, axis=1).astype(int), scores=scores)


# =============================================================================
# REGISTRY
# =============================================================================

def _adapter_factories() -> Dict[str, Callable[[], ModelAdapter]]:
    # imported here: ensemble_models builds on the types defined in this module
    from campaign_analyst.ml.ensemble_models import TreeBaggerAdapter

    return {
        NeuralNetAdapter.name: NeuralNetAdapter,
        LogisticRegressionAdapter.name: LogisticRegressionAdapter,
        DiscriminantAnalysisAdapter.name: DiscriminantAnalysisAdapter,
        KNNAdapter.name: KNNAdapter,
        NaiveBayesAdapter.name: NaiveBayesAdapter,
        SVMAdapter.name: SVMAdapter,
        DecisionTreeAdapter.name: DecisionTreeAdapter,
        TreeBaggerAdapter.name: TreeBaggerAdapter,
    }


def available_adapters() -> List[str]:
    """Names of all adapters, in comparison order."""
    return list(_adapter_factories())


def get_adapter(name: str, **kwargs) -> ModelAdapter:
    """
    Instantiate an adapter by name.

    Raises:
        InvalidConfig: if no adapter has that name
    """
    factories = _adapter_factories()
    if name not in factories:
        raise InvalidConfig(
            f"Unknown adapter '{name}'; available: {', '.join(factories)}",
            model=name,
            stage="configure",
        )
    return factories[name](**kwargs)


def default_adapters() -> List[ModelAdapter]:
    """One instance of every adapter, in comparison order."""
    return [factory() for factory in _adapter_factories().values()]


__all__ = [
    "Prediction", "TrainedModel", "ModelAdapter", "AdapterConfig",
    "NeuralNetConfig", "LogisticRegressionConfig", "DiscriminantConfig", "KNNConfig",
    "NaiveBayesConfig", "SVMConfig", "DecisionTreeConfig",
    "NeuralNetAdapter", "LogisticRegressionAdapter", "DiscriminantAnalysisAdapter",
    "KNNAdapter", "NaiveBayesAdapter", "SVMAdapter", "DecisionTreeAdapter",
    "resolve_config", "prepare_training", "check_prediction_input", "fit_estimator",
    "available_adapters", "get_adapter", "default_adapters",
]
