import discord
from discord.ext import commands
import logging
import asyncio
from typing import Any, Awaitable, Callable, Dict, Optional

from .config_manager import ConfigManager
from .data_manager import DataManager
from .errors import QuizError
from .models import AttemptSession, QuizResult, SessionState
from .quiz_controller import QuizController, QuizControllerError
from .quiz_engine import format_time
from .result_recorder import ResultRecorder
from .storage import create_repository

logger = logging.getLogger(__name__)

COLOR_OK = 0x00ff00
COLOR_WARN = 0xff6600
COLOR_ERROR = 0xff0000
COLOR_INFO = 0x6699ff


def option_label(index: int) -> str:
    """Letter shown before an option: 0 -> 'A'."""
    return chr(65 + index)


def score_message(percentage: int) -> str:
    if percentage >= 80:
        return "Excellent!"
    if percentage >= 60:
        return "Good progress"
    return "Keep practicing"


class QuizBot(commands.Bot):
    """Discord front-end for taking GrammarMaster quizzes"""

    def __init__(self, config=None):
        # Slash commands only need the guilds intent
        intents = discord.Intents.none()
        intents.guilds = True

        command_prefix = '!'
        if config and 'bot' in config:
            command_prefix = config['bot'].get('command_prefix', '!')

        super().__init__(
            command_prefix=command_prefix,
            intents=intents,
            help_command=None
        )

        self.app_config = config or {}

        self.data_manager: Optional[DataManager] = None
        self.config_manager: Optional[ConfigManager] = None
        self.result_recorder: Optional[ResultRecorder] = None
        self.quiz_controller: Optional[QuizController] = None

    async def setup_hook(self):
        """Called when the bot is starting up"""
        try:
            logger.info("Setting up bot components...")

            self.config_manager = ConfigManager()
            if self.app_config:
                self.config_manager.apply_config(self.app_config)

            self.data_manager = DataManager(self.config_manager.get_quiz_directory())
            self.result_recorder = ResultRecorder(create_repository(self.config_manager.get_results_file()))
            self.quiz_controller = QuizController(self.data_manager, self.result_recorder, self.config_manager)

            await self.load_quiz_data()
            await self.setup_commands()

            logger.info("Bot setup completed successfully")

        except Exception as e:
            logger.error(f"Error during bot setup: {e}")
            raise

    async def setup_commands(self):
        """Register all slash commands"""
        @self.tree.command(name="help", description="Display available commands and their descriptions")
        async def help_command(interaction: discord.Interaction):
            await self.handle_help(interaction)

        @self.tree.command(name="quizzes", description="List the grammar quizzes you can take")
        async def quizzes_command(interaction: discord.Interaction):
            await self.handle_quizzes(interaction)

        @self.tree.command(name="start", description="Start a timed quiz")
        @discord.app_commands.describe(quiz_id="Quiz id from /quizzes")
        async def start_command(interaction: discord.Interaction, quiz_id: str):
            await self.handle_start(interaction, quiz_id)

        @self.tree.command(name="answer", description="Select an answer for the current question")
        @discord.app_commands.describe(option="Option number (1 = A, 2 = B, ...)")
        async def answer_command(interaction: discord.Interaction, option: int):
            await self.handle_answer(interaction, option)

        @self.tree.command(name="next", description="Go to the next question")
        async def next_command(interaction: discord.Interaction):
            await self.handle_next(interaction)

        @self.tree.command(name="previous", description="Go back to the previous question")
        async def previous_command(interaction: discord.Interaction):
            await self.handle_previous(interaction)

        @self.tree.command(name="finish", description="Submit your answers (also retries a failed submission)")
        async def finish_command(interaction: discord.Interaction):
            await self.handle_finish(interaction)

        @self.tree.command(name="exit", description="Leave the current quiz without submitting")
        async def exit_command(interaction: discord.Interaction):
            await self.handle_exit(interaction)

        @self.tree.command(name="status", description="Show your quiz progress and remaining time")
        async def status_command(interaction: discord.Interaction):
            await self.handle_status(interaction)

        @self.tree.command(name="review", description="Review your answers after submitting")
        async def review_command(interaction: discord.Interaction):
            await self.handle_review(interaction)

        @self.tree.command(name="results", description="Show your quiz history and progress")
        async def results_command(interaction: discord.Interaction):
            await self.handle_results(interaction)

        logger.info("Slash commands registered successfully")

    async def load_quiz_data(self):
        """Load quiz files from the quizzes directory"""
        loaded_quizzes = self.data_manager.load_quiz_files()
        logger.info(f"Loaded {len(loaded_quizzes)} quizzes from {self.data_manager.quiz_directory}")
        for error in self.data_manager.get_load_errors():
            logger.warning(f"Quiz loading problem: {error}")

    async def on_ready(self):
        """Called when the bot has successfully connected to Discord"""
        logger.info(f"Bot is ready! Logged in as {self.user}")
        logger.info(f"Bot is in {len(self.guilds)} guilds")
        try:
            synced = await self.tree.sync()
            logger.info(f"Synced {len(synced)} slash commands")
        except discord.HTTPException as e:
            logger.error(f"Failed to sync slash commands: {e}")

    async def on_error(self, event, *args, **kwargs):
        """Handle general bot errors"""
        logger.error(f"An error occurred in event {event}", exc_info=True)

    async def close(self):
        if self.quiz_controller is not None:
            await self.quiz_controller.shutdown()
        await super().close()

    # Embeds

    def build_question_embed(self, session: AttemptSession) -> discord.Embed:
        """Question card with options, the current selection and the countdown."""
        quiz = session.quiz
        question = quiz.questions[session.current_index]
        selected = session.answers.get(question.id)

        if session.remaining_time > 60:
            color, timer_emoji = COLOR_OK, "⏱️"
        elif session.remaining_time > 10:
            color, timer_emoji = COLOR_WARN, "⚠️"
        else:
            color, timer_emoji = COLOR_ERROR, "🚨"

        lines = []
        for index, option in enumerate(question.options):
            marker = "🔘" if selected == index else "⚪"
            lines.append(f"{marker} **{option_label(index)})** {option}")

        embed = discord.Embed(
            title=f"🎯 {quiz.title}: Question {session.current_index + 1}/{quiz.total_questions}",
            description=f"{question.question}\n\n" + "\n".join(lines),
            color=color
        )
        embed.add_field(name=f"{timer_emoji} Time Remaining", value=format_time(session.remaining_time), inline=True)
        embed.add_field(name="✏️ Answered", value=f"{session.answered_count}/{quiz.total_questions}", inline=True)
        embed.set_footer(text="/answer <number> to choose, /next and /previous to move, /finish to submit")
        return embed

    def build_result_embed(self, result: QuizResult, title: str = "🏁 Quiz Complete!") -> discord.Embed:
        percentage = result.percentage
        embed = discord.Embed(
            title=title,
            description=(
                f"**{percentage}%**\n"
                f"You scored {result.score} out of {result.total_questions} questions correctly."
            ),
            color=COLOR_OK if percentage >= 60 else COLOR_WARN
        )
        embed.add_field(name="📈 Verdict", value=score_message(percentage), inline=False)
        embed.set_footer(text="Use /review to see explanations or /exit to close the quiz")
        return embed

    # Session events

    def make_event_callback(self, interaction: discord.Interaction) -> Callable[[str, Dict[str, Any]], Awaitable[None]]:
        """
        Event callback that keeps the user's quiz message current.

        Interaction tokens expire after 15 minutes. Once Discord answers 404,
        countdown edits stop and notices are posted to the channel instead.
        """
        user_id = str(interaction.user.id)
        token_expired = False

        async def send_notice(embed: discord.Embed, event: str) -> None:
            nonlocal token_expired
            if not token_expired:
                try:
                    await interaction.followup.send(embed=embed, ephemeral=True)
                    return
                except discord.HTTPException as e:
                    if e.status != 404:
                        raise
                    token_expired = True
                    logger.info(f"Interaction for user {user_id} expired, posting {event} to the channel")
            await self.send_to_channel(interaction, embed)

        async def on_event(event: str, payload: Dict[str, Any]) -> None:
            nonlocal token_expired
            session = self.quiz_controller.get_session(user_id)
            try:
                if event == 'tick':
                    remaining = payload['remaining_time']
                    # Discord rate limits edits; refresh every 10s and during the final seconds
                    if token_expired or session is None or not (remaining % 10 == 0 or remaining <= 5):
                        return
                    try:
                        await interaction.edit_original_response(embed=self.build_question_embed(session))
                    except discord.HTTPException as e:
                        if e.status != 404:
                            raise
                        token_expired = True
                        logger.info(f"Interaction for user {user_id} expired, countdown edits stopped")

                elif event == 'auto_submitted':
                    await send_notice(
                        discord.Embed(
                            title="⏰ Time's up!",
                            description=f"Submitting your {payload['answered_count']}/{payload['total_questions']} answers...",
                            color=COLOR_WARN
                        ),
                        event
                    )

                elif event == 'completed' and payload.get('trigger') == 'timer':
                    await send_notice(self.build_result_embed(payload['result']), event)

                elif event == 'submit_failed' and payload.get('trigger') == 'timer':
                    await send_notice(
                        discord.Embed(
                            title="❌ Submission Failed",
                            description=payload['user_message'],
                            color=COLOR_ERROR
                        ),
                        event
                    )

            except discord.HTTPException as e:
                await self.handle_discord_api_error(e, f"session event {event}")

        return on_event

    async def send_to_channel(self, interaction: discord.Interaction, embed: discord.Embed) -> None:
        """Post a notice where the quiz was started, or by DM when there is no channel."""
        if interaction.channel is not None:
            await interaction.channel.send(content=interaction.user.mention, embed=embed)
        else:
            await interaction.user.send(embed=embed)

    # Error handling

    async def send_with_retry(self, interaction: discord.Interaction, embed: discord.Embed,
                              operation: str, ephemeral: bool = True, max_retries: int = 3) -> bool:
        """Send an embed as the interaction response, retrying rate limits and server errors"""
        for attempt in range(max_retries):
            try:
                if interaction.response.is_done():
                    await interaction.followup.send(embed=embed, ephemeral=ephemeral)
                else:
                    await interaction.response.send_message(embed=embed, ephemeral=ephemeral)
                return True
            except discord.HTTPException as e:
                should_retry = await self.handle_discord_api_error(e, operation, interaction)
                if not should_retry or attempt == max_retries - 1:
                    return False
        return False

    async def handle_discord_api_error(self, error: Exception, operation: str,
                                       interaction: Optional[discord.Interaction] = None) -> bool:
        """
        Handle Discord API errors with appropriate retry logic and user feedback.

        Args:
            error: The Discord API error
            operation: Description of the operation that failed
            interaction: Discord interaction object (optional)

        Returns:
            True if the operation should be retried, False otherwise
        """
        if isinstance(error, discord.HTTPException):
            if error.status == 429:
                retry_after = getattr(error, 'retry_after', 5)
                logger.warning(f"Rate limited during {operation}, waiting {retry_after}s")
                await asyncio.sleep(retry_after)
                return True

            elif error.status in [500, 502, 503, 504]:
                logger.warning(f"Discord server error during {operation}: {error.status}")
                await asyncio.sleep(2)
                return True

            elif error.status == 403:
                logger.error(f"Permission denied during {operation}: {error}")
                if interaction:
                    await self.send_error_response(
                        interaction,
                        "Bot doesn't have permission to perform this action. Please check bot permissions.",
                        "❌ Permission Error"
                    )
                return False

            elif error.status == 404:
                # Expired interaction tokens surface as 404
                logger.warning(f"Resource not found during {operation}: {error}")
                return False

            else:
                logger.error(f"Discord API error during {operation}: {error}")
                if interaction:
                    await self.send_error_response(
                        interaction,
                        "Discord API error occurred. Please try again in a moment.",
                        "❌ Discord Error"
                    )
                return False

        logger.error(f"Unexpected error during {operation}: {error}")
        return False

    async def send_error_response(self, interaction: discord.Interaction, message: str, title: str = "❌ Error"):
        """Send formatted error response to user"""
        try:
            embed = discord.Embed(
                title=title,
                description=message,
                color=COLOR_ERROR
            )
            embed.set_footer(text="If this error persists, try using /help for available commands")

            if interaction.response.is_done():
                await interaction.followup.send(embed=embed, ephemeral=True)
            else:
                await interaction.response.send_message(embed=embed, ephemeral=True)
        except discord.HTTPException:
            logger.error("Failed to send error response to user")

    async def send_info_response(self, interaction: discord.Interaction, message: str, title: str = "ℹ️ Information"):
        embed = discord.Embed(title=title, description=message, color=COLOR_INFO)
        await self.send_with_retry(interaction, embed, "info response")

    async def report_failure(self, interaction: discord.Interaction, error: Exception, operation: str):
        """Turn a domain error into an ephemeral error message"""
        result = self.quiz_controller.handle_session_error(str(interaction.user.id), error, operation)
        await self.send_error_response(interaction, result['user_message'])

    # Command handlers

    async def handle_help(self, interaction: discord.Interaction):
        """Handle /help command"""
        help_embed = discord.Embed(
            title="📚 GrammarMaster Commands",
            description="Timed grammar quizzes with instant scoring and explanations",
            color=COLOR_OK
        )
        help_embed.add_field(
            name="🗂️ Catalog",
            value=(
                "`/quizzes` - List available quizzes\n"
                "`/results` - Your quiz history and average score"
            ),
            inline=False
        )
        help_embed.add_field(
            name="🎮 Taking a Quiz",
            value=(
                "`/start <quiz_id>` - Start a timed quiz\n"
                "`/answer <number>` - Choose an option for the current question\n"
                "`/next` / `/previous` - Move between questions\n"
                "`/status` - Progress and remaining time\n"
                "`/finish` - Submit your answers\n"
                "`/review` - Answers and explanations after submitting\n"
                "`/exit` - Leave the quiz"
            ),
            inline=False
        )
        help_embed.set_footer(text="Unanswered questions count as incorrect when time runs out")
        await self.send_with_retry(interaction, help_embed, "help")

    async def handle_quizzes(self, interaction: discord.Interaction):
        """Handle /quizzes command"""
        loading_summary = self.data_manager.get_loading_summary()
        quizzes = self.data_manager.list_quizzes()

        embed = discord.Embed(title="🗂️ Available Quizzes", color=COLOR_INFO)
        for quiz in quizzes[:25]:
            embed.add_field(
                name=f"{quiz.title} (`{quiz.id}`)",
                value=(
                    f"{quiz.description}\n"
                    f"📊 {quiz.difficulty.value.title()} · 🏷️ {quiz.category} · "
                    f"❓ {quiz.total_questions} questions · ⏱️ {quiz.time_limit} min"
                ),
                inline=False
            )
        if not quizzes:
            embed.description = "No quizzes are available right now."
        if loading_summary['fallback_active']:
            embed.set_footer(text="⚠️ Quiz files could not be loaded, showing a fallback quiz")
        await self.send_with_retry(interaction, embed, "list quizzes")

    async def handle_start(self, interaction: discord.Interaction, quiz_id: str):
        """Handle /start command"""
        user_id = str(interaction.user.id)
        try:
            session = await self.quiz_controller.open_session(
                user_id, quiz_id, self.make_event_callback(interaction)
            )
        except (QuizError, QuizControllerError) as e:
            await self.report_failure(interaction, e, "start")
            return

        logger.info(f"User {user_id} started quiz {quiz_id}")
        await self.send_with_retry(interaction, self.build_question_embed(session), "start quiz")

    async def handle_answer(self, interaction: discord.Interaction, option: int):
        """Handle /answer command; option is 1-based"""
        user_id = str(interaction.user.id)
        try:
            question = self.quiz_controller.get_current_question(user_id)
            if question is None:
                await self.send_error_response(interaction, "❌ You don't have an open quiz. Start one with `/start`.")
                return
            self.quiz_controller.select_answer(user_id, question.id, option - 1)
        except (QuizError, QuizControllerError) as e:
            await self.report_failure(interaction, e, "answer")
            return

        session = self.quiz_controller.get_session(user_id)
        await self.send_with_retry(interaction, self.build_question_embed(session), "answer")

    async def _navigate(self, interaction: discord.Interaction, move: Callable[[str], int], operation: str):
        user_id = str(interaction.user.id)
        try:
            move(user_id)
        except (QuizError, QuizControllerError) as e:
            await self.report_failure(interaction, e, operation)
            return
        session = self.quiz_controller.get_session(user_id)
        await self.send_with_retry(interaction, self.build_question_embed(session), operation)

    async def handle_next(self, interaction: discord.Interaction):
        await self._navigate(interaction, self.quiz_controller.next_question, "next question")

    async def handle_previous(self, interaction: discord.Interaction):
        await self._navigate(interaction, self.quiz_controller.previous_question, "previous question")

    async def handle_finish(self, interaction: discord.Interaction):
        """Handle /finish command, which also retries a failed submission"""
        user_id = str(interaction.user.id)
        try:
            result = await self.quiz_controller.finish(user_id)
        except (QuizError, QuizControllerError) as e:
            await self.report_failure(interaction, e, "submit")
            return

        if result is None:
            session = self.quiz_controller.get_session(user_id)
            if session is not None and session.state == SessionState.COMPLETED:
                await self.send_with_retry(
                    interaction, self.build_result_embed(session.result, "🏁 Already Submitted"), "finish"
                )
            else:
                await self.send_info_response(interaction, "Your answers are already being submitted.")
            return

        await self.send_with_retry(interaction, self.build_result_embed(result), "finish")

    async def handle_exit(self, interaction: discord.Interaction):
        """Handle /exit command"""
        user_id = str(interaction.user.id)
        state = self.quiz_controller.get_session_state(user_id)
        try:
            await self.quiz_controller.exit_session(user_id)
        except (QuizError, QuizControllerError) as e:
            await self.report_failure(interaction, e, "exit")
            return

        if state == SessionState.COMPLETED:
            await self.send_info_response(interaction, "Quiz closed. See `/results` for your history.", "👋 Closed")
        else:
            await self.send_info_response(interaction, "You left the quiz. No result was recorded.", "👋 Quiz Exited")

    async def handle_status(self, interaction: discord.Interaction):
        """Handle /status command"""
        progress = self.quiz_controller.get_session_progress(str(interaction.user.id))
        if progress is None:
            await self.send_info_response(interaction, "You don't have an open quiz. Use `/quizzes` to pick one.")
            return

        embed = discord.Embed(
            title=f"📊 {progress['quiz_title']}",
            description=f"State: **{progress['state'].replace('_', ' ')}**",
            color=COLOR_INFO
        )
        embed.add_field(
            name="Progress",
            value=(
                f"Question {progress['current_question']}/{progress['total_questions']} "
                f"({progress['progress_percent']}%)\n"
                f"Answered {progress['answered_count']}/{progress['total_questions']}"
            ),
            inline=False
        )
        embed.add_field(name="⏱️ Time Remaining", value=progress['formatted_time'], inline=True)
        if progress['last_error']:
            embed.add_field(name="⚠️ Last submission failed", value="Use `/finish` to retry", inline=False)
        await self.send_with_retry(interaction, embed, "status")

    async def handle_review(self, interaction: discord.Interaction):
        """Handle /review command"""
        try:
            review = self.quiz_controller.get_review(str(interaction.user.id))
        except (QuizError, QuizControllerError) as e:
            await self.report_failure(interaction, e, "review")
            return

        embed = discord.Embed(title="📝 Answer Review", color=COLOR_INFO)
        for number, entry in enumerate(review[:25], start=1):
            selected = entry['selectedAnswer']
            your_answer = (
                f"{option_label(selected)}) {entry['options'][selected]}" if selected is not None else "not answered"
            )
            correct_index = entry['correctAnswer']
            embed.add_field(
                name=f"{'✅' if entry['correct'] else '❌'} {number}. {entry['question']}"[:256],
                value=(
                    f"Your answer: {your_answer}\n"
                    f"Correct answer: {option_label(correct_index)}) {entry['options'][correct_index]}\n"
                    f"{entry['explanation']}"
                )[:1024],
                inline=False
            )
        await self.send_with_retry(interaction, embed, "review")

    async def handle_results(self, interaction: discord.Interaction):
        """Handle /results command"""
        try:
            history = await asyncio.to_thread(self.quiz_controller.get_user_history, str(interaction.user.id))
        except QuizError as e:
            await self.report_failure(interaction, e, "results")
            return

        summary = history['summary']
        embed = discord.Embed(
            title="📈 Your Progress",
            description=(
                f"Completed quizzes: **{summary['completedQuizzes']}**\n"
                f"Average score: **{summary['averageScore']}%** ({score_message(summary['averageScore'])})\n"
                f"Overall progress: **{summary['overallProgress']}%**"
            ),
            color=COLOR_INFO
        )
        for record in summary['recentResults']:
            result = QuizResult.from_dict(record)
            quiz_title = result.quiz_id
            if self.data_manager.quiz_exists(result.quiz_id):
                quiz_title = self.data_manager.get_quiz(result.quiz_id).title
            embed.add_field(
                name=quiz_title,
                value=f"{result.score}/{result.total_questions} ({result.percentage}%) · {result.completed_at:%Y-%m-%d %H:%M}",
                inline=False
            )
        await self.send_with_retry(interaction, embed, "results")


async def run_bot(token, config=None):
    """Run the bot until it is stopped"""
    bot = QuizBot(config)

    try:
        logger.info("Starting GrammarMaster Discord bot...")
        await bot.start(token)
    except discord.LoginFailure:
        logger.error("Invalid bot token provided")
    except discord.HTTPException as e:
        logger.error(f"HTTP error occurred: {e}")
    finally:
        if not bot.is_closed():
            await bot.close()
