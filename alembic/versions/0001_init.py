"""init games and predictions

Revision ID: 0001
Revises:
Create Date: 2025-01-15 00:00:00.000000
"""
from alembic import op


revision = "0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.execute(
        """
        CREATE TABLE IF NOT EXISTS games (
          id TEXT PRIMARY KEY,
          home_team VARCHAR(120) NOT NULL,
          away_team VARCHAR(120) NOT NULL,
          status VARCHAR(20) NOT NULL DEFAULT 'upcoming',
          home_score INTEGER,
          away_score INTEGER,
          kickoff TIMESTAMPTZ,
          week VARCHAR(50),
          league VARCHAR(100),
          external_event_id VARCHAR(32),
          season VARCHAR(50),
          created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
          updated_at TIMESTAMPTZ NOT NULL DEFAULT now(),
          CONSTRAINT games_scores_paired CHECK ((home_score IS NULL) = (away_score IS NULL)),
          CONSTRAINT games_scores_non_negative CHECK (home_score >= 0 AND away_score >= 0)
        )
        """
    )
    op.execute("CREATE INDEX IF NOT EXISTS ix_games_week ON games(week)")
    op.execute("CREATE INDEX IF NOT EXISTS ix_games_status ON games(status)")
    op.execute("CREATE INDEX IF NOT EXISTS ix_games_season ON games(season)")
    op.execute(
        """
        CREATE TABLE IF NOT EXISTS predictions (
          id BIGSERIAL PRIMARY KEY,
          user_id TEXT NOT NULL,
          game_id TEXT NOT NULL,
          predicted_home_score INTEGER CHECK (predicted_home_score >= 0),
          predicted_away_score INTEGER CHECK (predicted_away_score >= 0),
          player_name VARCHAR(120),
          created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
          CONSTRAINT uq_predictions_user_game UNIQUE (user_id, game_id)
        )
        """
    )
    op.execute("CREATE INDEX IF NOT EXISTS ix_predictions_game_id ON predictions(game_id)")


def downgrade():
    op.execute("DROP TABLE IF EXISTS predictions")
    op.execute("DROP TABLE IF EXISTS games")
