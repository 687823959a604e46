"""
Convolutional network for inhale/exhale classification.

The topology is described by :class:`ArchitectureSpec` so a persisted model
can be rebuilt from its stored description before loading weights.
"""

import torch

from pydantic import BaseModel, ConfigDict, Field
from torch import nn

from breathflow.constants import ClassifierConstants as CC

__all__ = ["ArchitectureSpec", "BreathingCNN"]


class ArchitectureSpec(BaseModel):
    """
    Serializable description of the classifier topology.

    Attributes:
        input_length: Feature vector length
        num_classes: Number of output classes
        conv_filters: Filters per convolution block
        conv_kernels: Kernel width per convolution block
        pool_size: Max-pooling window
        pooled_blocks: Number of leading blocks followed by max-pooling
        dense_units: Hidden dense layer widths
        dropout_rates: Dropout after each hidden dense layer
    """

    model_config = ConfigDict(frozen=True)

    input_length: int = Field(default=CC.INPUT_LENGTH, gt=0)
    num_classes: int = Field(default=CC.NUM_CLASSES, ge=2)
    conv_filters: tuple[int, ...] = CC.CONV_FILTERS
    conv_kernels: tuple[int, ...] = CC.CONV_KERNELS
    pool_size: int = Field(default=CC.POOL_SIZE, ge=1)
    pooled_blocks: int = Field(default=CC.POOLED_BLOCKS, ge=0)
    dense_units: tuple[int, ...] = CC.DENSE_UNITS
    dropout_rates: tuple[float, ...] = CC.DROPOUT_RATES


class BreathingCNN(nn.Module):
    """
    Lightweight 1D CNN over a spectrum feature vector.

    Input shape is ``(batch, input_length)`` or ``(batch, 1, input_length)``;
    output is raw logits of shape ``(batch, num_classes)``.
    """

    def __init__(self, spec: ArchitectureSpec | None = None):
        super().__init__()
        self.spec = spec or ArchitectureSpec()

        if len(self.spec.conv_filters) != len(self.spec.conv_kernels):
            raise ValueError("conv_filters and conv_kernels must have equal length")
        if len(self.spec.dense_units) != len(self.spec.dropout_rates):
            raise ValueError("dense_units and dropout_rates must have equal length")

        blocks: list[nn.Module] = []
        in_channels = 1
        for index, (filters, kernel) in enumerate(
            zip(self.spec.conv_filters, self.spec.conv_kernels, strict=True)
        ):
            blocks.append(nn.Conv1d(in_channels, filters, kernel, padding="same"))
            blocks.append(nn.ReLU())
            blocks.append(nn.BatchNorm1d(filters))
            if index < self.spec.pooled_blocks:
                blocks.append(nn.MaxPool1d(self.spec.pool_size))
            in_channels = filters
        self.features = nn.Sequential(*blocks)
        self.pool = nn.AdaptiveAvgPool1d(1)

        head: list[nn.Module] = []
        in_features = in_channels
        for units, rate in zip(
            self.spec.dense_units, self.spec.dropout_rates, strict=True
        ):
            head.extend([nn.Linear(in_features, units), nn.ReLU(), nn.Dropout(rate)])
            in_features = units
        head.append(nn.Linear(in_features, self.spec.num_classes))
        self.classifier = nn.Sequential(*head)

    def forward(self, x: torch.Tensor) -> torch.Tensor:
        if x.dim() == 2:
            x = x.unsqueeze(1)
        x = self.features(x)
        x = self.pool(x).squeeze(-1)
        logits: torch.Tensor = self.classifier(x)
        return logits

    def count_params(self) -> int:
        return sum(p.numel() for p in self.parameters())
