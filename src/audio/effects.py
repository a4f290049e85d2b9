"""In-place effect processors wrapping a single backend node.

Each effect keeps its parameter set in sync with the node it owns by
writing automation at the backend's current time, so values land
unclamped and sample-accurately instead of through the node's ``value``
shortcut.
"""
from __future__ import annotations

import logging
from typing import Dict, Mapping

from .backend import AudioBackend, AudioNodeHandle, GainNodeHandle, PannerNodeHandle
from .params import Parameter, PolarParam, UnitParam
from .processor import next_processor_id

logger = logging.getLogger(__name__)


class _InPlaceEffect:
    """Shared plumbing for effects whose input and output are the same node."""

    def __init__(self, backend: AudioBackend, node: AudioNodeHandle) -> None:
        self.id = next_processor_id(type(self).__name__)
        self._backend = backend
        self._node = node
        self._params: Dict[str, Parameter] = {}

    @property
    def params(self) -> Mapping[str, Parameter]:
        return self._params

    @property
    def input(self) -> AudioNodeHandle:
        return self._node

    @property
    def output(self) -> AudioNodeHandle:
        return self._node

    def connect(self, target: AudioNodeHandle) -> None:
        self._node.connect(target)

    def disconnect(self) -> None:
        self._node.disconnect()

    def destroy(self) -> None:
        self.disconnect()
        for parameter in self._params.values():
            parameter.clear_listeners()
        logger.debug("Destroyed effect %s", self.id)


class Gain(_InPlaceEffect):
    """Volume stage driven by a unit ``gain`` parameter."""

    def __init__(self, backend: AudioBackend, *, gain: float = 1.0) -> None:
        node: GainNodeHandle = backend.create_gain()
        super().__init__(backend, node)
        self.gain = UnitParam(gain, name="gain")
        self._params["gain"] = self.gain
        self.gain.on_change(
            lambda value: node.gain.set_value_at_time(value, backend.current_time),
            immediate=True,
        )


class Panner(_InPlaceEffect):
    """Stereo panner driven by a polar ``pan`` parameter."""

    def __init__(self, backend: AudioBackend, *, pan: float = 0.0) -> None:
        node: PannerNodeHandle = backend.create_panner()
        super().__init__(backend, node)
        self.pan = PolarParam(pan, name="pan")
        self._params["pan"] = self.pan
        self.pan.on_change(
            lambda value: node.pan.set_value_at_time(value, backend.current_time),
            immediate=True,
        )


__all__ = ["Gain", "Panner"]
