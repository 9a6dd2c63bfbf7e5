#!/usr/bin/env python3
"""
ScalarGrad Demo: Two-Moons Classification
=========================================

The training glue around the engine:
1. Generate the two-moons dataset
2. Build a Network with a linear 2-unit output
3. Train with softmax + cross-entropy, mini-batch SGD and an L2 penalty
4. Report loss and accuracy, optionally plot the decision boundary

Run: python examples/demo.py --epochs 5 --plot
"""

import argparse
import logging
import random
import sys
from typing import List, Sequence, Tuple

import numpy as np

from scalargrad import (
    Network,
    SGD,
    Value,
    cross_entropy_loss,
    draw_graph,
    one_hot_encode,
    softmax,
)


logger = logging.getLogger('scalargrad.demo')


def setup_logger(log_level: str = 'INFO') -> logging.Logger:
    logging.basicConfig(
        level=getattr(logging, log_level.upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[logging.StreamHandler(sys.stdout)]
    )
    return logger


def make_moons(
    n_samples: int = 100,
    noise: float = 0.1,
    seed: int = 42
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Generate the classic 'moons' dataset for binary classification.

    Two interleaved half-circles that are not linearly separable.

    Args:
        n_samples: Total number of samples.
        noise: Standard deviation of Gaussian noise.
        seed: Random seed for reproducibility.

    Returns:
        X: Features array of shape (n_samples, 2)
        y: Labels array of shape (n_samples,) with values 0 or 1
    """
    rng = np.random.default_rng(seed)

    n_first = n_samples // 2
    n_second = n_samples - n_first

    # First moon (top)
    theta1 = np.linspace(0, np.pi, n_first)
    moon1 = np.column_stack([np.cos(theta1), np.sin(theta1)])

    # Second moon (bottom, shifted)
    theta2 = np.linspace(0, np.pi, n_second)
    moon2 = np.column_stack([1 - np.cos(theta2), 0.5 - np.sin(theta2)])

    X = np.vstack([moon1, moon2]) + rng.normal(scale=noise, size=(n_samples, 2))
    y = np.array([0] * n_first + [1] * n_second)

    order = rng.permutation(n_samples)
    return X[order], y[order]


def predicted_label(probs: Sequence[Value]) -> int:
    """Index of the most probable class, first index on ties."""
    return max(range(len(probs)), key=lambda i: probs[i].data)


def accuracy(real: Sequence[int], predicted: Sequence[int]) -> float:
    if not real:
        return 0.0
    correct = sum(int(r == p) for r, p in zip(real, predicted))
    return correct / len(real)


def forward(model: Network, xi: Sequence[float]) -> List[Value]:
    return softmax(model([Value(float(v)) for v in xi]))


def train(
    model: Network,
    X: np.ndarray,
    y: np.ndarray,
    epochs: int = 5,
    batch_size: int = 64,
    lr: float = 0.01,
    weight_decay: float = 0.001
) -> List[float]:
    """
    Mini-batch training.

    Each sample gets its own backward pass; gradients accumulate over the
    batch and SGD averages them before stepping.

    Returns:
        Average loss per epoch.
    """
    params = model.parameters()
    losses = []

    for epoch in range(epochs):
        total_loss = 0.0
        real, predicted = [], []

        for start in range(0, len(X), batch_size):
            batch = range(start, min(start + batch_size, len(X)))
            optimizer = SGD(
                params, lr=lr, weight_decay=weight_decay, batch_size=len(batch)
            )
            optimizer.zero_grad()

            for i in batch:
                probs = forward(model, X[i])
                loss = cross_entropy_loss(one_hot_encode(int(y[i]), 2), probs)
                loss.backward()

                total_loss += loss.data
                real.append(int(y[i]))
                predicted.append(predicted_label(probs))

            optimizer.step()

        average_loss = total_loss / len(X)
        losses.append(average_loss)
        logger.info(
            "epoch: %d average_loss: %.4f accuracy: %.2f%%",
            epoch, average_loss, 100 * accuracy(real, predicted)
        )

    return losses


def evaluate(model: Network, X: np.ndarray, y: np.ndarray) -> Tuple[float, List[int]]:
    predictions = [predicted_label(forward(model, xi)) for xi in X]
    return accuracy([int(v) for v in y], predictions), predictions


def plot_decision_boundary(
    model: Network,
    X: np.ndarray,
    y: np.ndarray,
    path: str = './decision_boundary.png',
    title: str = "Decision Boundary"
) -> None:
    """
    Visualize the probability of class 1 over the input plane.

    Args:
        model: Trained Network.
        X: Feature matrix.
        y: Labels.
        path: Output image file.
        title: Plot title.
    """
    import matplotlib
    matplotlib.use('Agg')
    import matplotlib.pyplot as plt

    h = 0.05  # Step size
    x_min, x_max = X[:, 0].min() - 0.5, X[:, 0].max() + 0.5
    y_min, y_max = X[:, 1].min() - 0.5, X[:, 1].max() + 0.5
    xx, yy = np.meshgrid(
        np.arange(x_min, x_max, h),
        np.arange(y_min, y_max, h)
    )

    Z = np.array([
        forward(model, (x1, x2))[1].data
        for x1, x2 in zip(xx.ravel(), yy.ravel())
    ]).reshape(xx.shape)

    plt.figure(figsize=(10, 8))
    plt.contourf(xx, yy, Z, levels=50, cmap='RdBu', alpha=0.8)
    plt.colorbar(label='P(class 1)')
    plt.contour(xx, yy, Z, levels=[0.5], colors='black', linewidths=2)
    plt.scatter(X[:, 0], X[:, 1], c=y, cmap='RdBu', edgecolors='black', s=30)
    plt.xlabel('x1')
    plt.ylabel('x2')
    plt.title(title)
    plt.tight_layout()
    plt.savefig(path, dpi=150)
    plt.close()
    logger.info("Saved decision boundary plot to: %s", path)


def show_graph() -> None:
    """Log a small graph where x is used twice, with its gradients."""
    x = Value(3.0, label='x')
    sq = x * x
    sq.label = 'x*x'
    s = sq + x
    s.label = 's'
    s.backward()
    logger.info("ds/dx at x=3 is %s (expected 2x + 1 = 7)\n%s", x.grad, draw_graph(s))


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Train a small MLP on two moons")
    parser.add_argument("--samples", type=int, default=2000)
    parser.add_argument("--test-samples", type=int, default=100)
    parser.add_argument("--noise", type=float, default=0.1)
    parser.add_argument("--hidden", type=int, default=50)
    parser.add_argument("--epochs", type=int, default=5)
    parser.add_argument("--batch-size", type=int, default=64)
    parser.add_argument("--lr", type=float, default=0.1)
    parser.add_argument("--weight-decay", type=float, default=0.001)
    parser.add_argument("--seed", type=int, default=42)
    parser.add_argument("--plot", action="store_true", help="Save a decision boundary plot")
    parser.add_argument("--log-level", type=str, default="INFO",
                        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
                        help="Set the logging level")
    return parser.parse_args(argv)


def main(argv=None) -> None:
    args = parse_args(argv)
    setup_logger(args.log_level)
    logger.info("Command line arguments: %s", args)

    random.seed(args.seed)
    show_graph()

    X_train, y_train = make_moons(args.samples, args.noise, seed=args.seed)
    X_test, y_test = make_moons(args.test_samples, args.noise / 10, seed=args.seed + 1)

    model = Network([2, args.hidden, 2])
    logger.info("%s with %d parameters", model, len(model.parameters()))

    train(
        model, X_train, y_train,
        epochs=args.epochs,
        batch_size=args.batch_size,
        lr=args.lr,
        weight_decay=args.weight_decay
    )

    test_acc, _ = evaluate(model, X_test, y_test)
    logger.info("test accuracy: %.2f%%", 100 * test_acc)

    if args.plot:
        plot_decision_boundary(
            model, X_test, y_test,
            title=f"Decision Boundary (Accuracy: {test_acc:.1%})"
        )


if __name__ == "__main__":
    main()
