"""Achievement, progress and leaderboard engine"""
