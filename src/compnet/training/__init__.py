from .sgd import gradients_for_network, sgd_step

__all__ = ["gradients_for_network", "sgd_step"]
