"""Medication reminder bot - main entry point.

Watches one patient's reminders and prescriptions, posts alerts when doses
are due, flags missed doses, and handles reminder commands in the alert
channel.
"""

import discord
from discord import app_commands
from discord.ext import commands
from apscheduler.schedulers.asyncio import AsyncIOScheduler

from logger import logger
from config import DISCORD_TOKEN, ALERT_CHANNEL_ID, PATIENT_ID, SUPABASE_URL, SUPABASE_KEY
from domains.adherence import (
    AdherenceScheduler,
    AlertDispatcher,
    InMemoryScheduleStore,
    SupabaseScheduleStore,
    build_alert_channel,
    handle_reminder_command,
)


class ReminderBot(commands.Bot):
    """Bot that tears the reminder loop down before disconnecting."""

    async def close(self):
        adherence.stop()
        if scheduler.running:
            scheduler.shutdown(wait=False)
        await super().close()


# Initialize bot
intents = discord.Intents.default()
intents.message_content = True
bot = ReminderBot(command_prefix="/", intents=intents)

# Initialize scheduler
scheduler = AsyncIOScheduler()

if SUPABASE_URL and SUPABASE_KEY:
    store = SupabaseScheduleStore(scheduler)
else:
    logger.warning("Supabase not configured, reminders are kept in memory only")
    store = InMemoryScheduleStore()

dispatcher = AlertDispatcher(build_alert_channel(bot))
adherence = AdherenceScheduler(store, dispatcher, scheduler)


@bot.event
async def on_ready():
    """Called when bot is connected and ready."""
    logger.info(f"Logged in as {bot.user}")

    try:
        synced = await bot.tree.sync()
        logger.info(f"Synced {len(synced)} slash commands")
    except Exception as e:
        logger.error(f"Failed to sync slash commands: {e}")

    if not scheduler.running:
        scheduler.start()

    try:
        await adherence.start(PATIENT_ID)
    except Exception as e:
        logger.error(f"Failed to start reminder scheduler: {e}")

    logger.info(f"Scheduler started with {len(scheduler.get_jobs())} jobs")


@bot.event
async def on_message(message):
    """Handle reminder commands in the alert channel."""
    if message.author.bot:
        return

    if ALERT_CHANNEL_ID and message.channel.id != ALERT_CHANNEL_ID:
        return

    if not adherence.owner_id:
        return

    response = await handle_reminder_command(message.content, adherence.owner_id, store, dispatcher)
    if response:
        await message.channel.send(response)


@bot.tree.command(name="patient", description="Switch the patient whose reminders are watched")
@app_commands.describe(patient_id="Patient id (leave empty to stop reminders)")
async def cmd_patient(interaction: discord.Interaction, patient_id: str = ""):
    """Move the reminder loop to another patient, or stop it."""
    await interaction.response.defer()

    try:
        await adherence.start(patient_id.strip() or None)
        if adherence.owner_id:
            await interaction.followup.send(f"Watching reminders for `{adherence.owner_id}`.")
        else:
            await interaction.followup.send("Reminder scheduler stopped.")
    except Exception as e:
        logger.error(f"Patient command failed: {e}")
        await interaction.followup.send(f"Failed to switch patient: {e}")


@bot.event
async def on_error(event, *args, **kwargs):
    """Handle errors."""
    logger.error(f"Bot error in {event}: {args}")


def main():
    """Entry point."""
    if not DISCORD_TOKEN:
        logger.error("DISCORD_TOKEN not set")
        return

    logger.info("Starting medication reminder bot...")
    bot.run(DISCORD_TOKEN)


if __name__ == "__main__":
    main()
