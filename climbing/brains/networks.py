"""
Multi-layer perceptrons shared by the DQN and PPO brains.
"""
import torch.nn as nn


class MLP(nn.Module):
    """
    Fully connected network: Linear -> ReLU for every hidden layer, linear output.
    """

    def __init__(self, input_size, hidden_sizes, output_size, init='he'):
        super(MLP, self).__init__()
        layers = []
        prev_size = input_size

        for hidden_size in hidden_sizes:
            layers.append(nn.Linear(prev_size, hidden_size))
            layers.append(nn.ReLU())
            prev_size = hidden_size

        layers.append(nn.Linear(prev_size, output_size))
        self.network = nn.Sequential(*layers)
        self._init_weights(init)

    def _init_weights(self, init):
        for module in self.network:
            if not isinstance(module, nn.Linear):
                continue
            if init == 'he':
                nn.init.kaiming_normal_(module.weight, nonlinearity='relu')
            elif init == 'glorot':
                nn.init.xavier_uniform_(module.weight)
            else:
                raise ValueError(f"Unknown init scheme: {init}")
            nn.init.zeros_(module.bias)

    def forward(self, x):
        return self.network(x)
