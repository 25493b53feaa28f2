from temporal_rl.agent_qlearning import QLearningAgent
from temporal_rl.dungeon import generate
from temporal_rl.env import DungeonEnv
from temporal_rl.state import AgentAction, Mode, SimulationState
from temporal_rl.transition import step

__all__ = [
    "AgentAction",
    "DungeonEnv",
    "Mode",
    "QLearningAgent",
    "SimulationState",
    "generate",
    "step",
]
