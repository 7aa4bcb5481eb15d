import matplotlib

matplotlib.use("Agg")

import matplotlib.pyplot as plt
import numpy as np
import seaborn as sns

from ..config import FRAME_HEIGHT, FRAME_WIDTH


def plot_temperature_image(image, path=None, title=None, cmap='inferno', mask_bad_pixels=True):
    """
    Plot a calibrated temperature image.

    Args:
        image: TemperatureImage to plot
        path: Where to save the figure (not saved when None)
        title: Title for the plot
        cmap: Colormap to use
        mask_bad_pixels: Blank out the pixels the EEPROM flags as broken or outliers

    Returns:
        The 24x32 array that was drawn.
    """
    grid = image.masked() if mask_bad_pixels else image.representative()
    grid = np.asarray(grid, dtype=float).reshape(FRAME_HEIGHT, FRAME_WIDTH)

    fig = plt.figure(figsize=(8, 6))
    plt.imshow(grid, cmap=cmap)
    plt.colorbar(label='Temperature (°C)')

    if title:
        plt.title(title)

    plt.tight_layout()
    if path:
        plt.savefig(path, dpi=150, bbox_inches='tight')
    plt.close(fig)
    return grid


def plot_uncertainty_map(image, path=None, title='Temperature uncertainty (support width, °C)'):
    """
    Heat map of the per-pixel spread of the output distributions.
    Concrete (deterministic) pixels show a width of zero.
    """
    widths = np.asarray(image.support_width(), dtype=float).reshape(FRAME_HEIGHT, FRAME_WIDTH)

    fig = plt.figure(figsize=(10, 6))
    sns.heatmap(widths, cmap='viridis', square=True, xticklabels=4, yticklabels=4,
                cbar_kws={'label': 'Support width (°C)'})
    plt.title(title)
    plt.xlabel('Column')
    plt.ylabel('Row')

    plt.tight_layout()
    if path:
        plt.savefig(path, dpi=150, bbox_inches='tight')
    plt.close(fig)
    return widths
