import logging
from telegram import Bot
from telegram.error import TelegramError

logger = logging.getLogger(__name__)

async def send_telegram_alert(bot_token: str, chat_id: str, message: str) -> bool:
    """
    Sends an asynchronous Telegram alert using python-telegram-bot v20+.
    """
    if not bot_token or not chat_id:
        logger.warning("Telegram Bot Token or Chat ID not configured. Skipping alert.")
        return False

    try:
        bot = Bot(token=bot_token)
        async with bot:
            await bot.send_message(chat_id=chat_id, text=message)
        logger.info("Telegram alert sent.")
        return True
    except TelegramError as e:
        logger.error(f"Failed to send Telegram alert: {e}")
        return False


class FailureAlerter:
    """
    Coordinator listener that alerts once after N consecutive failed attempts
    and once more when a token is extracted again.
    """

    def __init__(self, bot_token: str, chat_id: str, threshold: int = 5):
        self.bot_token = bot_token
        self.chat_id = chat_id
        self.threshold = threshold
        self.consecutive_failures = 0
        self._alerted = False

    async def attempt_finished(self, outcome) -> None:
        if outcome.succeeded:
            if self._alerted:
                await send_telegram_alert(
                    self.bot_token, self.chat_id,
                    f"🟢 Token extraction recovered after {self.consecutive_failures} failed attempts."
                )
            self.consecutive_failures = 0
            self._alerted = False
            return

        self.consecutive_failures += 1
        if self.consecutive_failures >= self.threshold and not self._alerted:
            self._alerted = True
            await send_telegram_alert(
                self.bot_token, self.chat_id,
                f"🔴 Token extraction failed {self.consecutive_failures} times in a row.\nLast error: {outcome.error}"
            )
