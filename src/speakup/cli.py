"""
CLI interface for practice history and progress.
"""

import argparse
import sys
from datetime import datetime
from typing import Optional

import numpy as np

from .database import PracticeDatabase
from .ledger import calculate_streak, goal_baseline, longest_streak, weekly_progress
from .models import GOAL_TEMPLATES, DrillMode, Goal, ScoreFlag
from .scoring import calculate_trend


class PracticeCLI:
    """Command-line interface for displaying practice history."""

    def __init__(self, db_path: str = "~/.local/share/speakup/practice.db"):
        """
        Initialize CLI with database connection.

        Args:
            db_path: Path to practice database
        """
        self.db = PracticeDatabase(db_path)

    def show_stats(self, record_id: Optional[int] = None) -> int:
        """
        Show the score card for a recording.

        Args:
            record_id: Recording ID (default: most recent)
        """
        if record_id is None:
            recent = self.db.get_recent_recordings(limit=1)
            if not recent:
                print("No sessions found.", file=sys.stderr)
                return 1
            record = recent[0]
        else:
            record = self.db.get_recording(record_id)
            if not record:
                print(f"Session #{record_id} not found.", file=sys.stderr)
                return 1

        score = record.score
        print("┏" + "━" * 55 + "┓")
        print(f"┃{'📊 SESSION #' + str(record.record_id) + ' SCORE CARD':^55}┃")
        print("┗" + "━" * 55 + "┛")
        print()

        print("📅 Session Info")
        print(f"   Date:     {record.recorded_at.strftime('%Y-%m-%d %H:%M:%S')}")
        print(f"   Duration: {record.duration_seconds:.1f}s")
        if record.category:
            print(f"   Category: {record.category}")
        print()

        print(f"🎯 Overall: {score.overall}/100")
        print(f"   ├─ Clarity:       {score.clarity}")
        print(f"   ├─ Pace:          {score.pace} ({score.words_per_minute:.0f} wpm)")
        print(f"   ├─ Filler Usage:  {score.filler_usage} ({score.total_filler_count} of {score.total_words} words)")
        print(f"   └─ Pause Quality: {score.pause_quality} ({score.pause_count} pauses, "
              f"avg {score.average_pause_seconds:.1f}s)")
        print()

        if score.filler_breakdown:
            print("🗣️  Fillers")
            for word, count in score.filler_breakdown:
                print(f"   {word:12} {count}")
            print()

        history = [r.score.overall for r in self.db.get_all_recordings()
                   if r.record_id is not None and r.record_id < record.record_id]
        trend = calculate_trend(score.overall, history)
        print(f"📈 Trend: {trend.value}")

        if score.flags:
            print(f"⚠️  Flags: {', '.join(f.value for f in score.flags)}")
        return 0

    def show_history(self, limit: int = 10, flag: Optional[str] = None) -> int:
        """
        Show recording history table.

        Args:
            limit: Number of recent recordings to show
            flag: Only show recordings carrying this score flag
        """
        if flag:
            records = self.db.get_recordings_with_flag(ScoreFlag(flag))[:limit]
        else:
            records = self.db.get_recent_recordings(limit=limit)

        if not records:
            print("No sessions found.", file=sys.stderr)
            return 1

        print("┏" + "━" * 62 + "┓")
        print(f"┃{'📚 SESSION HISTORY (Last ' + str(limit) + ')':^62}┃")
        print("┗" + "━" * 62 + "┛")
        print()

        print("┌" + "─" * 8 + "┬" + "─" * 18 + "┬" + "─" * 9 + "┬" + "─" * 8 + "┬" + "─" * 8 + "┬" + "─" * 8 + "┐")
        print("│ ID     │ Date             │ Score   │ WPM    │ Fillers│ Time   │")
        print("├" + "─" * 8 + "┼" + "─" * 18 + "┼" + "─" * 9 + "┼" + "─" * 8 + "┼" + "─" * 8 + "┼" + "─" * 8 + "┤")

        best = max(r.score.overall for r in records)
        for record in records:
            score_str = f"{record.score.overall}"
            if record.score.overall == best:
                score_str += " 🏆"
            date = record.recorded_at.strftime('%Y-%m-%d %H:%M')
            print(f"│ #{record.record_id:<5} │ {date:16} │ {score_str:7} │ "
                  f"{record.score.words_per_minute:6.0f} │ {record.score.total_filler_count:6} │ "
                  f"{record.duration_seconds:5.0f}s │")

        print("└" + "─" * 8 + "┴" + "─" * 18 + "┴" + "─" * 9 + "┴" + "─" * 8 + "┴" + "─" * 8 + "┴" + "─" * 8 + "┘")
        print()
        print("Legend: 🏆 Best score")
        return 0

    def show_summary(self) -> int:
        """Show lifetime totals, streaks and weekly progress."""
        records = self.db.get_all_recordings()
        if not records:
            print("No practice statistics available yet.", file=sys.stderr)
            return 1

        totals = self.db.get_summary()
        dates = [r.recorded_at for r in records]

        print("┏" + "━" * 62 + "┓")
        print(f"┃{'🏆 PRACTICE SUMMARY':^62}┃")
        print("┗" + "━" * 62 + "┛")
        print()

        print("📈 Totals (All Time)")
        print(f"   Sessions:   {totals['total_sessions']}")
        print(f"   Words:      {totals['total_words']:,}")
        print(f"   Time:       {totals['total_seconds'] / 60:.1f} minutes")
        print(f"   Avg Score:  {totals['avg_score']:.0f} (best {totals['best_score']})")
        print(f"   Avg Pace:   {totals['avg_wpm']:.0f} wpm")
        print()

        print("🔥 Streaks")
        print(f"   Current:    {calculate_streak(dates)} day(s)")
        print(f"   Longest:    {longest_streak(dates)} day(s)")
        print()

        weekly = weekly_progress(records)
        if weekly:
            trend_str = "📈 (improving!)" if weekly.has_improved else "📉" if weekly.score_change < 0 else ""
            print("📊 This Week")
            print(f"   Sessions:   {weekly.sessions_this_week} ({weekly.sessions_delta:+d} vs last week)")
            print(f"   Score:      {weekly.score_change:+.1f} points {trend_str}")
            print(f"   Fillers:    {weekly.filler_reduction:+.1f}% reduction")
            print(f"   Practice:   {weekly.total_minutes:.1f} minutes")
            print()

        recent_scores = [r.score.overall for r in records[-5:]]
        print(f"   Last 5 avg: {np.mean(recent_scores):.0f}")
        print(f"   Database:   {self.db.get_database_size_mb():.2f} MB")
        return 0

    def show_goals(self, add: Optional[int] = None) -> int:
        """
        List goals, or start one from a template.

        Args:
            add: 1-based template number to start
        """
        if add is not None:
            if not 1 <= add <= len(GOAL_TEMPLATES):
                print(f"Unknown goal template: {add}", file=sys.stderr)
                return 1
            template = GOAL_TEMPLATES[add - 1]
            goal = Goal.from_template(template, baseline=goal_baseline(template.type, self.db.get_all_recordings()))
            self.db.save_goal(goal)
            print(f"🎯 Started goal: {goal.title} (due {goal.deadline.strftime('%Y-%m-%d')})")
            return 0

        goals = self.db.get_goals()
        now = datetime.now()

        print("🎯 Goals")
        if not goals:
            print("   No goals yet. Templates:")
            for i, template in enumerate(GOAL_TEMPLATES, 1):
                print(f"   {i}. {template.title}: {template.description}")
            return 0

        for goal in goals:
            if goal.is_completed:
                status = "✓ done"
            elif goal.is_active:
                status = f"{goal.days_remaining(now)}d left"
            else:
                status = "expired"
            print(f"   {goal.title:20} {goal.current}/{goal.target} {goal.type.unit} "
                  f"({goal.progress_percentage}%) [{status}]")
        return 0

    def show_achievements(self) -> int:
        achievements = self.db.get_achievements()
        unlocked = [a for a in achievements.values() if a.is_unlocked]

        print(f"🏆 Achievements ({len(unlocked)}/{len(achievements)})")
        for achievement in achievements.values():
            if achievement.is_unlocked:
                when = achievement.unlocked_date.strftime('%Y-%m-%d') if achievement.unlocked_date else ""
                print(f"   ✓ {achievement.title:20} {when}")
            else:
                print(f"   · {achievement.title:20} {achievement.description}")
        return 0

    def show_drills(self, limit: int = 10, mode: Optional[str] = None) -> int:
        results = self.db.get_recent_drill_results(limit=limit, mode=DrillMode(mode) if mode else None)
        if not results:
            print("No drills found.", file=sys.stderr)
            return 1

        print("🏋️  Recent Drills")
        for result in results:
            status = "✓" if result.passed else "✗"
            when = result.completed_at.strftime('%Y-%m-%d %H:%M') if result.completed_at else ""
            print(f"   {status} {when} {result.mode.title:20} {result.score:3}/100  {result.details}")
        return 0

    def close(self):
        """Close database connection."""
        self.db.close()


def main(argv=None):
    """CLI entry point"""
    parser = argparse.ArgumentParser(
        description='SpeakUp practice history and progress'
    )
    parser.add_argument(
        '--db',
        default="~/.local/share/speakup/practice.db",
        help='Path to practice database'
    )

    subparsers = parser.add_subparsers(dest='command', help='Command to execute')

    stats_parser = subparsers.add_parser(
        'stats',
        help='Show a session score card (default: most recent)'
    )
    stats_parser.add_argument(
        'record_id',
        type=int,
        nargs='?',
        help='Session ID to display (default: most recent)'
    )

    history_parser = subparsers.add_parser(
        'history',
        help='Show session history'
    )
    history_parser.add_argument(
        '--limit',
        type=int,
        default=10,
        help='Number of recent sessions to show (default: 10)'
    )
    history_parser.add_argument(
        '--flag',
        choices=[f.value for f in ScoreFlag],
        help='Only show sessions with this flag'
    )

    subparsers.add_parser(
        'summary',
        help='Show lifetime totals, streaks and weekly progress'
    )

    goals_parser = subparsers.add_parser(
        'goals',
        help='Show goals'
    )
    goals_parser.add_argument(
        '--add',
        type=int,
        metavar='N',
        help='Start goal from template N'
    )

    subparsers.add_parser(
        'achievements',
        help='Show achievements'
    )

    drills_parser = subparsers.add_parser(
        'drills',
        help='Show recent drill results'
    )
    drills_parser.add_argument('--limit', type=int, default=10)
    drills_parser.add_argument('--mode', choices=[m.value for m in DrillMode])

    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 0

    cli = PracticeCLI(args.db)
    try:
        if args.command == 'stats':
            return cli.show_stats(args.record_id)
        if args.command == 'history':
            return cli.show_history(args.limit, args.flag)
        if args.command == 'summary':
            return cli.show_summary()
        if args.command == 'goals':
            return cli.show_goals(args.add)
        if args.command == 'achievements':
            return cli.show_achievements()
        if args.command == 'drills':
            return cli.show_drills(args.limit, args.mode)
        return 1
    finally:
        cli.close()


if __name__ == '__main__':
    sys.exit(main())
