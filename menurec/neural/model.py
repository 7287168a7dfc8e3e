from __future__ import annotations

import logging

import numpy as np
import pandas as pd
from sklearn.decomposition import TruncatedSVD
from sklearn.neural_network import MLPRegressor

from ..recommendations.catalog import Catalog
from .config import DEFAULT_NEURAL_CONFIG, NeuralConfig

logger = logging.getLogger(__name__)


class NeuralModel:
    """Feed-forward scorer over latent user/item factors and item features.

    Factors come from a truncated SVD of the user x item implicit-rating
    matrix; an ``MLPRegressor`` learns to predict ``rating / 5`` from the
    concatenated factors, their element-wise product and the catalog
    features of the item.  Unrated pairs are sampled as negatives (target 0).
    """

    def __init__(self, config: NeuralConfig = DEFAULT_NEURAL_CONFIG) -> None:
        self.config = config
        self.user_index: dict[str, int] = {}
        self.item_index: dict[str, int] = {}
        self.user_factors: np.ndarray | None = None
        self.item_factors: np.ndarray | None = None
        self.item_features: np.ndarray | None = None
        self.regressor: MLPRegressor | None = None
        self.training_samples = 0

    @staticmethod
    def _catalog_features(item_ids: list[str], catalog: Catalog) -> np.ndarray:
        df = catalog.df
        max_price = float(df["price"].max()) if len(df) else 0.0
        max_price = max_price or 1.0
        features = np.zeros((len(item_ids), 4))
        for i, item_id in enumerate(item_ids):
            row = catalog.get(item_id)
            if row is None:
                continue
            features[i] = [
                float(row["price"]) / max_price,
                float(row["rating_average"]) / 5.0,
                float(row["popularity_score"]),
                float(row["spice_level"]) / 5.0,
            ]
        return features

    def _rows(self, users: np.ndarray, items: np.ndarray) -> np.ndarray:
        uf = self.user_factors[users]
        vf = self.item_factors[items]
        return np.hstack([uf, vf, uf * vf, self.item_features[items]])

    def fit(self, interactions: pd.DataFrame, catalog: Catalog) -> "NeuralModel":
        if len(interactions) < self.config.min_training_samples:
            raise ValueError(
                f"insufficient training data: {len(interactions)} interactions, "
                f"need {self.config.min_training_samples}"
            )

        matrix = (
            interactions.groupby(["user_id", "item_id"])["rating"].max().unstack(fill_value=0.0)
        )
        if min(matrix.shape) < 2:
            raise ValueError("insufficient training data: need at least two users and two items")

        self.user_index = {str(u): i for i, u in enumerate(matrix.index)}
        self.item_index = {str(v): i for i, v in enumerate(matrix.columns)}
        values = matrix.to_numpy(dtype=float)

        n_components = max(1, min(self.config.embedding_dim, min(values.shape) - 1))
        svd = TruncatedSVD(n_components=n_components, random_state=self.config.random_state)
        self.user_factors = svd.fit_transform(values)
        self.item_factors = svd.components_.T
        self.item_features = self._catalog_features(list(self.item_index), catalog)

        pos_users, pos_items = np.nonzero(values)
        pos_targets = values[pos_users, pos_items] / 5.0

        rng = np.random.default_rng(self.config.random_state)
        unrated = np.argwhere(values == 0)
        n_neg = min(len(unrated), int(len(pos_users) * self.config.negative_ratio))
        if n_neg:
            chosen = unrated[rng.choice(len(unrated), size=n_neg, replace=False)]
            neg_users, neg_items = chosen[:, 0], chosen[:, 1]
        else:
            neg_users = neg_items = np.array([], dtype=int)

        users = np.concatenate([pos_users, neg_users])
        items = np.concatenate([pos_items, neg_items])
        targets = np.concatenate([pos_targets, np.zeros(len(neg_users))])

        self.regressor = MLPRegressor(
            hidden_layer_sizes=self.config.hidden_layers,
            learning_rate_init=self.config.learning_rate,
            max_iter=self.config.max_iter,
            random_state=self.config.random_state,
        )
        self.regressor.fit(self._rows(users, items), targets)
        self.training_samples = len(targets)
        logger.info(
            "Fitted neural model: %d users, %d items, %d samples",
            len(self.user_index), len(self.item_index), self.training_samples,
        )
        return self

    def predict(self, user_id: str, item_ids: list[str]) -> dict[str, float]:
        """Predicted affinity in [0, 1] for the items the model knows."""
        if self.regressor is None or user_id not in self.user_index:
            return {}
        known = [i for i in item_ids if i in self.item_index]
        if not known:
            return {}
        users = np.full(len(known), self.user_index[user_id])
        items = np.array([self.item_index[i] for i in known])
        preds = np.clip(self.regressor.predict(self._rows(users, items)), 0.0, 1.0)
        return {item_id: float(p) for item_id, p in zip(known, preds)}
