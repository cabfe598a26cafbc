"""Config key resolution: semantic parameter -> vendor key.

Cameras name the same setting differently (``iso`` on one body,
``isospeed`` on another). The resolver asks the camera for the choices of
each candidate key in priority order and keeps the first one that answers.
Probes go one at a time through the device channel and stop at the first
hit, so a parameter costs at most one probe per candidate.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence

from tether_mcp.devices.channel import DeviceChannel
from tether_mcp.devices.parameters import AliasMap, ResolvedKey, SemanticParameter
from tether_mcp.drivers.cameras import CONFIG_KEY_CANDIDATES, TransportError
from tether_mcp.observability import get_logger

logger = get_logger(__name__)

__all__ = ["ConfigKeyResolver"]


class ConfigKeyResolver:
    """Probes candidate config keys against the live camera."""

    def __init__(
        self,
        channel: DeviceChannel,
        candidates: Mapping[str, Sequence[str]] = CONFIG_KEY_CANDIDATES,
    ) -> None:
        """Create a resolver.

        Args:
            channel: Device channel the probes go through.
            candidates: Semantic parameter name -> ordered candidate keys.
                Parameters not listed never resolve.
        """
        self._channel = channel
        self._candidates = candidates

    async def resolve(
        self,
        parameter: SemanticParameter | str,
        candidates: Sequence[str] | None = None,
    ) -> ResolvedKey | None:
        """Find the first candidate key the camera accepts.

        A candidate is accepted when its choices query succeeds, even with
        no choices. Any transport error rejects the candidate and moves on
        to the next; a disconnected camera therefore resolves nothing.

        Args:
            parameter: Semantic parameter to resolve.
            candidates: Keys to try, in order. Defaults to the table.

        Returns:
            The resolved key with its choices, or None when no candidate
            was accepted.

        Example:
            >>> resolved = await resolver.resolve("iso")
            >>> resolved.key, resolved.choices[:3]
            ('isospeed', ('100', '200', '400'))
        """
        param = SemanticParameter.parse(parameter)
        keys = (
            candidates
            if candidates is not None
            else self._candidates.get(param.value, ())
        )
        transport = self._channel.transport

        for key in keys:
            try:
                choices = await self._channel.run(
                    "probe", transport.get_config_choices, key
                )
            except TransportError as e:
                logger.debug(
                    "Config key rejected", parameter=param.value, key=key, error=str(e)
                )
                continue
            logger.debug(
                "Config key resolved",
                parameter=param.value,
                key=key,
                choices=len(choices),
            )
            return ResolvedKey(parameter=param, key=key, choices=tuple(choices))

        logger.info("Parameter not supported by camera", parameter=param.value)
        return None

    async def resolve_all(self) -> AliasMap:
        """Resolve every parameter in the candidate table, one after another."""
        entries: dict[SemanticParameter, ResolvedKey] = {}
        for name in self._candidates:
            resolved = await self.resolve(name)
            if resolved is not None:
                entries[resolved.parameter] = resolved
        return AliasMap(entries)
