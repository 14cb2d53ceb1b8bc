"""
Print and plot training progress from the model metadata.json.
"""
import argparse
import json
import os
import sys

import matplotlib
matplotlib.use("Agg")
import matplotlib.pyplot as plt
import numpy as np

DEFAULT_MODEL_PATH = "training-data/models"


def load_metadata(model_path):
    """Metadata dict from model_path/metadata.json, or None if there is none."""
    path = os.path.join(model_path, "metadata.json")
    if not os.path.exists(path):
        print(f"Error: '{path}' does not exist.")
        print("Run `climbing-train` first to produce checkpoints.")
        return None

    with open(path, "r") as f:
        return json.load(f)


def moving_average(values, window=5):
    """Simple moving average; empty when there are fewer values than the window."""
    if len(values) < window:
        return np.array([])
    return np.convolve(values, np.ones(window) / window, mode='valid')


def print_summary(metadata, last=10):
    history = metadata.get("training_history", [])

    print("=" * 60)
    print(f"Agent:          {metadata.get('kind')}")
    print(f"Version:        {metadata.get('version')}")
    print(f"Episodes:       {metadata.get('total_episodes')}")
    print(f"Steps:          {metadata.get('total_steps')}")
    print(f"Avg reward:     {metadata.get('avg_reward', 0.0):.2f}")
    best = metadata.get('best_reward')
    print(f"Best avg:       {best:.2f}" if best is not None else "Best avg:       -")
    print(f"Success rate:   {metadata.get('success_rate', 0.0) * 100:.1f}%")
    print(f"Last saved:     {metadata.get('last_saved')}")
    print("=" * 60)

    if not history:
        print("No checkpoints recorded yet.")
        return

    print(f"\nLast {min(last, len(history))} checkpoints:")
    print(f"{'version':>8} {'episode':>8} {'avg reward':>11} {'success':>8}")
    for entry in history[-last:]:
        print(f"{entry['version']:>8} {entry['episode']:>8} "
              f"{entry['avg_reward']:>11.2f} {entry['success_rate'] * 100:>7.1f}%")


def plot_history(metadata, output, window=5):
    """Plot average reward and success rate per checkpoint into a PNG file."""
    history = metadata.get("training_history", [])
    if not history:
        return None

    episodes = [entry['episode'] for entry in history]
    rewards = [entry['avg_reward'] for entry in history]
    success = [entry['success_rate'] * 100 for entry in history]

    fig, (ax_reward, ax_success) = plt.subplots(2, 1, figsize=(12, 8), sharex=True)

    ax_reward.plot(episodes, rewards, label="Average reward", marker='o', linestyle='-', color='blue')
    trend = moving_average(rewards, window)
    if len(trend):
        ax_reward.plot(episodes[window - 1:], trend, label=f"Trend (moving average of {window})",
                       linestyle='--', color='red', linewidth=2)
    ax_reward.set_ylabel("Reward")
    ax_reward.legend()
    ax_reward.grid(True)

    ax_success.plot(episodes, success, label="Success rate", marker='o', color='green')
    ax_success.set_ylim(0, 100)
    ax_success.set_xlabel("Episode")
    ax_success.set_ylabel("Success (%)")
    ax_success.legend()
    ax_success.grid(True)

    fig.suptitle(f"Training progress ({metadata.get('kind')})")
    fig.tight_layout()

    directory = os.path.dirname(output)
    if directory:
        os.makedirs(directory, exist_ok=True)
    fig.savefig(output)
    plt.close(fig)
    return output


def main(argv=None):
    parser = argparse.ArgumentParser(description="Show training progress of a saved agent")
    parser.add_argument("--model-path", type=str, default=DEFAULT_MODEL_PATH)
    parser.add_argument("--output", type=str, default="training_progress.png")
    parser.add_argument("--last", type=int, default=10, help="Checkpoints listed in the table")
    parser.add_argument("--window", type=int, default=5, help="Moving average window")
    parser.add_argument("--no-plot", action="store_true")
    args = parser.parse_args(argv)

    metadata = load_metadata(args.model_path)
    if metadata is None:
        return 1

    print_summary(metadata, args.last)
    if not args.no_plot:
        saved = plot_history(metadata, args.output, args.window)
        if saved:
            print(f"\nPlot saved as: '{saved}'")
    return 0


if __name__ == "__main__":
    sys.exit(main())
