from studybot.services.badges import BadgeMilestoneEvaluator, select_tier
from studybot.services.sessions import SessionService
from studybot.services.settlement import RewardSettlementCoordinator
from studybot.services.state_machine import SessionStateMachine

__all__ = [
    "BadgeMilestoneEvaluator",
    "RewardSettlementCoordinator",
    "SessionService",
    "SessionStateMachine",
    "select_tier",
]
