"""User-facing message pools for study sessions."""
import random

START_MESSAGES = [
    "Alright, bookworm! Let's see if you can actually focus for {minutes} minutes. I'll be watching! ⏱️",
    "Fine, I'll believe you're studying when I see it. {minutes} minutes starting NOW! 📚",
    "{minutes} minutes of actual studying? This I gotta see! Clock's ticking! ⏰",
    "Brain cells, activate! You've got {minutes} minutes to make them work. No slacking! 🧠",
    "Oh look who decided to study today! {minutes} minutes on the clock - impress me! 📝",
]

ENCOURAGING_MESSAGES = [
    "💪 Keep going! You're doing great!",
    "🧠 Your brain is getting stronger with every minute!",
    "🚀 Halfway there! Keep up the amazing work!",
    "📚 Learning is a superpower, and you're becoming stronger!",
    "⏱️ Time flies when you're being productive. You're crushing it!",
    "🔥 Your future self will thank you for this dedication!",
    "✨ Focus is your superpower right now!",
    "🌟 Every minute of studying brings you closer to your goals!",
    "📝 Keep that concentration going - you're in the zone!",
    "🏆 Champions are made through consistent effort - just like you're doing now!",
]

CANCELLED_MESSAGE = "⚠️ Study session cancelled. Remember, consistent studying is key to success!"
RESET_MESSAGE = "✅ Your study session has been reset successfully. You can now start a new one."
NOTHING_TO_RESET_MESSAGE = "✅ No study session in progress. You can start a new one now."
COMPLETED_MESSAGE = "🎉 Congratulations! You've completed a {minutes}-minute study session!\n\nProcessing your reward..."
REWARD_SUCCESS_MESSAGE = (
    "✅ Study session rewards processed successfully!\n\n"
    "Reward: {amount} {symbol} tokens\n"
    "Sessions completed: {count}\n"
    "Transaction: {url}"
)
BADGE_MINTED_MESSAGE = (
    "🎖️ Congratulations! You've earned the {tier} Tier Badge!\n\n"
    "This NFT has been minted to your wallet to commemorate your dedication to learning.\n\n"
    "Transaction: {url}"
)


def session_kind(display_minutes: int) -> str:
    return "pomodoro" if display_minutes <= 25 else "extended"


class MessagePicker:
    """Random picks from the fixed pools; pass a seeded Random for tests."""

    def __init__(self, rng: random.Random | None = None) -> None:
        self._rng = rng or random.Random()

    def start(self, display_minutes: int) -> str:
        return self._rng.choice(START_MESSAGES).format(minutes=display_minutes)

    def encouragement(self) -> str:
        return self._rng.choice(ENCOURAGING_MESSAGES)
