"""Force-directed layout for the concept graph.

The physics mirrors the d3-force setup used by the graph view: a link force
toward an ideal edge length, many-body repulsion, a centering shift and
collision separation, integrated with velocity decay while a global
temperature (``alpha``) cools toward ``alpha_target``.

``step`` is a pure function from one LayoutState to the next; LayoutEngine
holds the current state and the interactive operations (pinning, re-heating
on new snapshots); LayoutRunner drives ticks from an asyncio task and can be
torn down at any time.
"""

import asyncio
import inspect
import logging
import math
import random
from dataclasses import dataclass, replace
from typing import Optional

from .config import (
    ALPHA_DECAY,
    ALPHA_MIN,
    CENTER_STRENGTH,
    CHARGE_STRENGTH,
    COLLIDE_PADDING,
    DRAG_ALPHA_TARGET,
    KINETIC_ENERGY_THRESHOLD,
    LINK_DISTANCE,
    LINK_WEIGHT_CAP,
    TICK_INTERVAL,
    VELOCITY_DECAY,
    VIEWPORT,
)

logger = logging.getLogger(__name__)

INITIAL_RADIUS = 10.0
INITIAL_ANGLE = math.pi * (3 - math.sqrt(5))
DISTANCE_MIN2 = 1.0


@dataclass(frozen=True)
class LayoutSettings:
    link_distance: float = LINK_DISTANCE
    link_weight_cap: float = LINK_WEIGHT_CAP
    charge_strength: float = CHARGE_STRENGTH
    center_strength: float = CENTER_STRENGTH
    collide_padding: float = COLLIDE_PADDING
    velocity_decay: float = VELOCITY_DECAY
    alpha_min: float = ALPHA_MIN
    alpha_decay: float = ALPHA_DECAY
    energy_threshold: float = KINETIC_ENERGY_THRESHOLD
    width: float = VIEWPORT[0]
    height: float = VIEWPORT[1]

    @property
    def center(self):
        return self.width / 2, self.height / 2


@dataclass(frozen=True)
class NodeState:
    id: str
    x: float
    y: float
    radius: float
    vx: float = 0.0
    vy: float = 0.0
    fx: Optional[float] = None
    fy: Optional[float] = None

    @property
    def pinned(self):
        return self.fx is not None


@dataclass(frozen=True)
class LinkState:
    source: int  # index into LayoutState.nodes
    target: int
    strength: float


@dataclass(frozen=True)
class LayoutState:
    nodes: tuple = ()
    links: tuple = ()
    alpha: float = 1.0
    alpha_target: float = 0.0
    ticks: int = 0


def _jiggle(rng):
    return (rng.random() - 0.5) * 1e-6


def step(state, dt=1.0, settings=None):
    """Advance the simulation by one tick and return the new state.

    The input state is not modified.
    """
    settings = settings or LayoutSettings()
    alpha = state.alpha + (state.alpha_target - state.alpha) * settings.alpha_decay
    n = len(state.nodes)
    if n == 0:
        return replace(state, alpha=alpha, ticks=state.ticks + 1)

    rng = random.Random(state.ticks)
    xs = [node.x for node in state.nodes]
    ys = [node.y for node in state.nodes]
    vxs = [node.vx for node in state.nodes]
    vys = [node.vy for node in state.nodes]
    radii = [node.radius for node in state.nodes]

    # Link force
    count = [0] * n
    for link in state.links:
        count[link.source] += 1
        count[link.target] += 1
    for link in state.links:
        s, t = link.source, link.target
        x = xs[t] + vxs[t] - xs[s] - vxs[s] or _jiggle(rng)
        y = ys[t] + vys[t] - ys[s] - vys[s] or _jiggle(rng)
        length = math.sqrt(x * x + y * y)
        weight = min(link.strength, settings.link_weight_cap) / settings.link_weight_cap
        strength = weight / min(count[s], count[t])
        length = (length - settings.link_distance) / length * alpha * strength
        x *= length
        y *= length
        bias = count[s] / (count[s] + count[t])
        vxs[t] -= x * bias
        vys[t] -= y * bias
        vxs[s] += x * (1 - bias)
        vys[s] += y * (1 - bias)

    # Many-body repulsion
    for i in range(n):
        for j in range(i + 1, n):
            x = xs[j] - xs[i]
            y = ys[j] - ys[i]
            if x == 0:
                x = _jiggle(rng)
            if y == 0:
                y = _jiggle(rng)
            dist2 = x * x + y * y
            if dist2 < DISTANCE_MIN2:
                dist2 = math.sqrt(DISTANCE_MIN2 * dist2)
            w = settings.charge_strength * alpha / dist2
            vxs[i] += x * w
            vys[i] += y * w
            vxs[j] -= x * w
            vys[j] -= y * w

    # Centering
    cx, cy = settings.center
    sx = (sum(xs) / n - cx) * settings.center_strength
    sy = (sum(ys) / n - cy) * settings.center_strength
    for i in range(n):
        xs[i] -= sx
        ys[i] -= sy

    # Collision
    for i in range(n):
        xi = xs[i] + vxs[i]
        yi = ys[i] + vys[i]
        ri = radii[i] + settings.collide_padding
        ri2 = ri * ri
        for j in range(i + 1, n):
            rj = radii[j] + settings.collide_padding
            r = ri + rj
            x = xi - xs[j] - vxs[j]
            y = yi - ys[j] - vys[j]
            dist2 = x * x + y * y
            if dist2 >= r * r:
                continue
            if x == 0:
                x = _jiggle(rng)
                dist2 += x * x
            if y == 0:
                y = _jiggle(rng)
                dist2 += y * y
            dist = math.sqrt(dist2)
            dist = (r - dist) / dist
            x *= dist
            y *= dist
            rj2 = rj * rj
            vxs[i] += x * rj2 / (ri2 + rj2)
            vys[i] += y * rj2 / (ri2 + rj2)
            vxs[j] -= x * ri2 / (ri2 + rj2)
            vys[j] -= y * ri2 / (ri2 + rj2)

    # Integrate
    nodes = []
    keep = 1 - settings.velocity_decay
    for i, node in enumerate(state.nodes):
        if node.pinned:
            nodes.append(replace(node, x=node.fx, y=node.fy, vx=0.0, vy=0.0))
            continue
        vx = vxs[i] * keep
        vy = vys[i] * keep
        nodes.append(replace(node, x=xs[i] + vx * dt, y=ys[i] + vy * dt,
                             vx=vx, vy=vy))

    return replace(state, nodes=tuple(nodes), alpha=alpha, ticks=state.ticks + 1)


class LayoutEngine:
    """Holds layout state for the current graph snapshot."""

    def __init__(self, settings=None):
        self.settings = settings or LayoutSettings()
        self.state = LayoutState()
        self._index = {}

    def __len__(self):
        return len(self.state.nodes)

    def set_graph(self, snapshot):
        """Replace the graph, keeping positions and pins of known nodes.

        New nodes are placed on a phyllotaxis spiral around the viewport
        centre. Relations to unknown nodes and self-loops are ignored. The
        simulation is re-heated.
        """
        cx, cy = self.settings.center
        nodes = []
        for i, concept in enumerate(snapshot.nodes):
            radius = concept.weight
            old = self._node(concept.id)
            if old is not None:
                nodes.append(replace(old, radius=radius))
                continue
            r = INITIAL_RADIUS * math.sqrt(0.5 + i)
            angle = i * INITIAL_ANGLE
            nodes.append(NodeState(id=concept.id, x=cx + r * math.cos(angle),
                                   y=cy + r * math.sin(angle), radius=radius))

        index = {node.id: i for i, node in enumerate(nodes)}
        links = []
        for rel in snapshot.links:
            s = index.get(rel.source)
            t = index.get(rel.target)
            if s is None or t is None or s == t:
                continue
            links.append(LinkState(source=s, target=t, strength=rel.strength))

        self._index = index
        self.state = replace(self.state, nodes=tuple(nodes), links=tuple(links),
                             alpha=1.0)

    def _node(self, node_id):
        i = self._index.get(node_id)
        return None if i is None else self.state.nodes[i]

    def _replace_node(self, node_id, **changes):
        i = self._index[node_id]
        nodes = list(self.state.nodes)
        nodes[i] = replace(nodes[i], **changes)
        self.state = replace(self.state, nodes=tuple(nodes))

    def tick(self, dt=1.0):
        self.state = step(self.state, dt, self.settings)
        return self.state

    def run(self, max_ticks=1000):
        """Tick until quiescent or ``max_ticks``; return the ticks taken."""
        ticks = 0
        while ticks < max_ticks:
            self.tick()
            ticks += 1
            if self.is_quiescent():
                break
        return ticks

    def reheat(self, alpha=1.0):
        self.state = replace(self.state, alpha=alpha)

    def pin(self, node_id, x, y):
        """Hold a node at (x, y). Used for drag start and drag move.

        Raises KeyError for unknown nodes.
        """
        self._replace_node(node_id, x=x, y=y, vx=0.0, vy=0.0, fx=x, fy=y)
        self.state = replace(self.state, alpha_target=DRAG_ALPHA_TARGET)

    def release(self, node_id):
        """End a drag: the node resumes from its pin with zero velocity."""
        node = self._node(node_id)
        if node is None:
            raise KeyError(node_id)
        x = node.fx if node.pinned else node.x
        y = node.fy if node.pinned else node.y
        self._replace_node(node_id, x=x, y=y, vx=0.0, vy=0.0, fx=None, fy=None)
        if not any(n.pinned for n in self.state.nodes):
            self.state = replace(self.state, alpha_target=0.0)

    def kinetic_energy(self):
        return sum(n.vx * n.vx + n.vy * n.vy for n in self.state.nodes)

    def is_quiescent(self):
        s = self.settings
        if self.state.alpha_target >= s.alpha_min:
            return False
        return self.state.alpha < s.alpha_min or self.kinetic_energy() < s.energy_threshold

    def positions(self):
        return {n.id: (n.x, n.y) for n in self.state.nodes}


class LayoutRunner:
    """Drives a LayoutEngine from an asyncio task.

    ``start`` ticks once per ``interval`` until the engine is quiescent;
    ``stop`` cancels the loop whether or not it has settled. Only one loop
    runs at a time.
    """

    def __init__(self, engine, interval=TICK_INTERVAL, on_tick=None):
        self.engine = engine
        self.interval = interval
        self.on_tick = on_tick
        self._task = None

    @property
    def running(self):
        return self._task is not None and not self._task.done()

    def start(self):
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(self._run())

    def stop(self):
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None

    async def wait(self):
        if self._task is not None:
            await asyncio.shield(self._task)

    async def _run(self):
        try:
            while True:
                self.engine.tick()
                if self.on_tick is not None:
                    result = self.on_tick(self.engine.positions())
                    if inspect.isawaitable(result):
                        await result
                if self.engine.is_quiescent():
                    logger.debug("Layout settled after %d ticks",
                                 self.engine.state.ticks)
                    break
                await asyncio.sleep(self.interval)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Layout loop failed")
