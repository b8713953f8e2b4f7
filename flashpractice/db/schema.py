"""
Defines the database schema for flashpractice using a SQL string constant.
This keeps the schema definition separate from the database connection and
operation logic.

users, decks and flashcards belong to the deck layer; the practice engine
only reads them. The practice_* and flashcard_schedules tables are owned by
the engine.

lock_version exists only to be bumped by row claims: DuckDB has no
SELECT ... FOR UPDATE, and an UPDATE that leaves every value unchanged does
not conflict with a concurrent writer.
"""

DB_SCHEMA_SQL = """
    CREATE TABLE IF NOT EXISTS users (
        id UUID PRIMARY KEY,
        username VARCHAR NOT NULL UNIQUE,
        created_at TIMESTAMP WITH TIME ZONE NOT NULL,
        scheduler_base_interval_ms BIGINT,
        scheduler_reward_multiplier DOUBLE,
        scheduler_penalty_multiplier DOUBLE,
        scheduler_required_time_ms BIGINT,
        scheduler_time_history_limit INTEGER,
        daily_novel_limit INTEGER,
        daily_review_limit INTEGER
    );

    CREATE TABLE IF NOT EXISTS decks (
        id UUID PRIMARY KEY,
        user_id UUID NOT NULL,
        name VARCHAR NOT NULL,
        is_archived BOOLEAN NOT NULL DEFAULT false,
        created_at TIMESTAMP WITH TIME ZONE NOT NULL
    );

    CREATE TABLE IF NOT EXISTS flashcards (
        id UUID PRIMARY KEY,
        deck_id UUID NOT NULL,
        kind VARCHAR NOT NULL DEFAULT 'basic',
        front VARCHAR NOT NULL,
        back VARCHAR NOT NULL,
        mcq_options VARCHAR[],
        mcq_correct_index INTEGER,
        sketch_code VARCHAR,
        sketch_width INTEGER,
        sketch_height INTEGER,
        created_at TIMESTAMP WITH TIME ZONE NOT NULL
    );

    CREATE TABLE IF NOT EXISTS practice_sessions (
        id UUID PRIMARY KEY,
        user_id UUID NOT NULL,
        deck_id UUID NOT NULL,
        status VARCHAR NOT NULL CHECK (status IN ('active', 'ended')),
        state VARCHAR NOT NULL
            CHECK (state IN ('intro', 'front', 'back', 'past', 'done')),
        progress_index INTEGER NOT NULL DEFAULT 0,
        view_index INTEGER NOT NULL DEFAULT 0,
        front_started_at TIMESTAMP WITH TIME ZONE,
        front_elapsed_ms BIGINT NOT NULL DEFAULT 0,
        created_at TIMESTAMP WITH TIME ZONE NOT NULL,
        updated_at TIMESTAMP WITH TIME ZONE NOT NULL,
        lock_version BIGINT NOT NULL DEFAULT 0
    );

    CREATE TABLE IF NOT EXISTS practice_session_queue (
        session_id UUID NOT NULL,
        position INTEGER NOT NULL,
        flashcard_id UUID NOT NULL,
        is_novel BOOLEAN NOT NULL,
        PRIMARY KEY (session_id, position)
    );

    CREATE TABLE IF NOT EXISTS practice_attempts (
        session_id UUID NOT NULL,
        position INTEGER NOT NULL,
        user_id UUID NOT NULL,
        deck_id UUID NOT NULL,
        flashcard_id UUID NOT NULL,
        is_novel BOOLEAN NOT NULL,
        answered_correct BOOLEAN NOT NULL,
        time_ms BIGINT NOT NULL,
        answered_at TIMESTAMP WITH TIME ZONE NOT NULL,
        PRIMARY KEY (session_id, position)
    );

    CREATE TABLE IF NOT EXISTS flashcard_schedules (
        user_id UUID NOT NULL,
        flashcard_id UUID NOT NULL,
        due_at TIMESTAMP WITH TIME ZONE NOT NULL,
        interval_ms BIGINT NOT NULL,
        prev_interval_ms BIGINT,
        last_multiplier DOUBLE,
        review_history VARCHAR NOT NULL DEFAULT '[]',
        last_review_time_ms BIGINT,
        last_review_correct BOOLEAN,
        last_seen_at TIMESTAMP WITH TIME ZONE,
        prev_last_seen_at TIMESTAMP WITH TIME ZONE,
        lock_version BIGINT NOT NULL DEFAULT 0,
        PRIMARY KEY (user_id, flashcard_id)
    );

    CREATE TABLE IF NOT EXISTS practice_session_locks (
        user_id UUID NOT NULL,
        deck_id UUID NOT NULL,
        claimed_at TIMESTAMP WITH TIME ZONE NOT NULL,
        lock_version BIGINT NOT NULL DEFAULT 0,
        PRIMARY KEY (user_id, deck_id)
    );

    CREATE INDEX IF NOT EXISTS idx_decks_user_id ON decks (user_id);
    CREATE INDEX IF NOT EXISTS idx_flashcards_deck_id ON flashcards (deck_id);
    CREATE INDEX IF NOT EXISTS idx_practice_sessions_user_deck
        ON practice_sessions (user_id, deck_id);
    CREATE INDEX IF NOT EXISTS idx_practice_attempts_user_answered_at
        ON practice_attempts (user_id, answered_at);
    CREATE INDEX IF NOT EXISTS idx_practice_attempts_user_flashcard
        ON practice_attempts (user_id, flashcard_id);
"""
