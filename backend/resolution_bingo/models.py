from datetime import datetime, timezone

from flask_login import UserMixin

from resolution_bingo import db

GRID_SIZE = 5
JOKER_POSITION = (GRID_SIZE * GRID_SIZE) // 2
EMPTY_CELL_TEXT = 'Empty'


def utcnow():
    """Naive UTC timestamp; every DateTime column is stored as naive UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class CellState:
    PENDING = 'pending'
    COMPLETED = 'completed'
    PENDING_REVIEW = 'pending_review'
    ACCOMPLISHED = 'accomplished'

    ALL = (PENDING, COMPLETED, PENDING_REVIEW, ACCOMPLISHED)


class SourceType:
    TEAM = 'team'
    MEMBER_PROVIDED = 'member_provided'
    PERSONAL = 'personal'
    EMPTY = 'empty'

    ALL = (TEAM, MEMBER_PROVIDED, PERSONAL, EMPTY)


class ThreadStatus:
    OPEN = 'open'
    CLOSED = 'closed'


class Vote:
    ACCEPT = 'accept'
    DENY = 'deny'

    ALL = (ACCEPT, DENY)


class TeamStatus:
    FORMING = 'forming'
    STARTED = 'started'


# ---- External collaborators (identity, teams, resolution CRUD live elsewhere) ----

class User(UserMixin, db.Model):
    __tablename__ = 'user'
    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(64), unique=True, nullable=False, index=True)

    def to_dict(self):
        return {
            'id': self.id,
            'username': self.username,
        }


class Team(db.Model):
    __tablename__ = 'team'
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    leader_user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False)
    team_resolution_text = db.Column(db.String(1000), nullable=True)
    status = db.Column(db.String(16), nullable=False, default=TeamStatus.FORMING)  # forming, started
    memberships = db.relationship('TeamMembership', backref='team', lazy='dynamic')

    def member_ids(self):
        return [m.user_id for m in self.memberships.order_by(TeamMembership.id)]

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'leader_user_id': self.leader_user_id,
            'team_resolution_text': self.team_resolution_text,
            'status': self.status,
            'member_ids': self.member_ids(),
        }


class TeamMembership(db.Model):
    __tablename__ = 'team_membership'
    __table_args__ = (db.UniqueConstraint('team_id', 'user_id', name='uq_team_membership'),)
    id = db.Column(db.Integer, primary_key=True)
    team_id = db.Column(db.Integer, db.ForeignKey('team.id'), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False, index=True)
    role = db.Column(db.String(16), nullable=False, default='member')  # leader, member
    joined_at = db.Column(db.DateTime, nullable=False, default=utcnow)


class Resolution(db.Model):
    """A personal resolution owned by a single user."""
    __tablename__ = 'resolution'
    id = db.Column(db.Integer, primary_key=True)
    owner_user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False, index=True)
    text = db.Column(db.String(1000), nullable=False)


class ProvidedResolution(db.Model):
    """A resolution one teammate wrote for another."""
    __tablename__ = 'provided_resolution'
    __table_args__ = (db.UniqueConstraint('team_id', 'from_user_id', 'to_user_id', name='uq_provided_resolution'),)
    id = db.Column(db.Integer, primary_key=True)
    team_id = db.Column(db.Integer, db.ForeignKey('team.id'), nullable=False, index=True)
    from_user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False)
    to_user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False, index=True)
    text = db.Column(db.String(1000), nullable=False)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)


# ---- Game state ----

class BingoCard(db.Model):
    __tablename__ = 'bingo_card'
    __table_args__ = (db.UniqueConstraint('team_id', 'user_id', name='uq_bingo_card_team_user'),)
    id = db.Column(db.Integer, primary_key=True)
    team_id = db.Column(db.Integer, db.ForeignKey('team.id'), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False, index=True)
    grid_size = db.Column(db.Integer, nullable=False, default=GRID_SIZE)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    # Stored cells only; the joker is synthesized on read
    cells = db.relationship('BingoCell', backref='card', order_by='BingoCell.position', lazy='select')
    owner = db.relationship('User')


class BingoCell(db.Model):
    __tablename__ = 'bingo_cell'
    __table_args__ = (
        db.UniqueConstraint('card_id', 'position', name='uq_bingo_cell_position'),
        db.CheckConstraint(f'position <> {JOKER_POSITION}', name='ck_bingo_cell_not_joker'),
    )
    id = db.Column(db.Integer, primary_key=True)
    card_id = db.Column(db.Integer, db.ForeignKey('bingo_card.id'), nullable=False, index=True)
    position = db.Column(db.Integer, nullable=False)
    # Content reference: at most one of these is set; team cells resolve via the team
    resolution_id = db.Column(db.Integer, db.ForeignKey('resolution.id', ondelete='SET NULL'), nullable=True)
    provided_resolution_id = db.Column(db.Integer, db.ForeignKey('provided_resolution.id', ondelete='SET NULL'), nullable=True)
    source_type = db.Column(db.String(32), nullable=False)  # team, member_provided, personal, empty
    source_user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=True)
    state = db.Column(db.String(32), nullable=False, default=CellState.PENDING)
    resolved_text = db.Column(db.String(1000), nullable=False)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    is_joker = False

    @property
    def is_empty(self):
        return self.source_type == SourceType.EMPTY

    def to_dict(self, open_thread_id=None):
        return {
            'id': self.id,
            'card_id': self.card_id,
            'position': self.position,
            'text': self.resolved_text,
            'source_type': self.source_type,
            'source_user_id': self.source_user_id,
            'state': self.state,
            'is_joker': False,
            'is_empty': self.is_empty,
            'open_thread_id': open_thread_id,
            'updated_at': self.updated_at.isoformat() if self.updated_at else None,
        }


class ReviewThread(db.Model):
    __tablename__ = 'review_thread'
    id = db.Column(db.Integer, primary_key=True)
    cell_id = db.Column(db.Integer, db.ForeignKey('bingo_cell.id'), nullable=False, index=True)
    completed_by_user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False)
    status = db.Column(db.String(16), nullable=False, default=ThreadStatus.OPEN, index=True)  # open, closed
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    closed_at = db.Column(db.DateTime, nullable=True)
    cell = db.relationship('BingoCell')
    messages = db.relationship('ReviewMessage', backref='thread', order_by='ReviewMessage.id', lazy='dynamic')
    files = db.relationship('ReviewFile', backref='thread', order_by='ReviewFile.id', lazy='dynamic')
    votes = db.relationship('ReviewVote', backref='thread', order_by='ReviewVote.id', lazy='dynamic')

    def to_dict(self):
        return {
            'id': self.id,
            'cell_id': self.cell_id,
            'completed_by_user_id': self.completed_by_user_id,
            'status': self.status,
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'closed_at': self.closed_at.isoformat() if self.closed_at else None,
        }


class ReviewMessage(db.Model):
    __tablename__ = 'review_message'
    id = db.Column(db.Integer, primary_key=True)
    thread_id = db.Column(db.Integer, db.ForeignKey('review_thread.id'), nullable=False, index=True)
    author_user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False)
    content = db.Column(db.Text, nullable=False)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    author = db.relationship('User')

    def to_dict(self):
        return {
            'id': self.id,
            'thread_id': self.thread_id,
            'author_user_id': self.author_user_id,
            'author_username': self.author.username if self.author else None,
            'content': self.content,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }


class ReviewFile(db.Model):
    __tablename__ = 'review_file'
    id = db.Column(db.Integer, primary_key=True)
    thread_id = db.Column(db.Integer, db.ForeignKey('review_thread.id'), nullable=False, index=True)
    uploaded_by_user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False)
    file_path = db.Column(db.String(512), nullable=False)
    file_size = db.Column(db.Integer, nullable=False)
    file_name = db.Column(db.String(255), nullable=False)
    mime_type = db.Column(db.String(100), nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    def to_dict(self):
        return {
            'id': self.id,
            'thread_id': self.thread_id,
            'uploaded_by_user_id': self.uploaded_by_user_id,
            'file_path': self.file_path,
            'file_size': self.file_size,
            'file_name': self.file_name,
            'mime_type': self.mime_type,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }


class ReviewVote(db.Model):
    __tablename__ = 'review_vote'
    __table_args__ = (db.UniqueConstraint('thread_id', 'voter_user_id', name='uq_review_vote_voter'),)
    id = db.Column(db.Integer, primary_key=True)
    thread_id = db.Column(db.Integer, db.ForeignKey('review_thread.id'), nullable=False, index=True)
    voter_user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False)
    vote = db.Column(db.String(8), nullable=False)  # accept, deny
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    def to_dict(self):
        return {
            'id': self.id,
            'thread_id': self.thread_id,
            'voter_user_id': self.voter_user_id,
            'vote': self.vote,
            'updated_at': self.updated_at.isoformat() if self.updated_at else None,
        }


class LeaderboardEntry(db.Model):
    """Materialized per-member stats; rebuilt from cell state, never appended."""
    __tablename__ = 'team_leaderboard'
    __table_args__ = (db.UniqueConstraint('team_id', 'user_id', name='uq_team_leaderboard_user'),)
    id = db.Column(db.Integer, primary_key=True)
    team_id = db.Column(db.Integer, db.ForeignKey('team.id'), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False)
    completed_tasks = db.Column(db.Integer, nullable=False, default=0)
    first_bingo_at = db.Column(db.DateTime, nullable=True)
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow, onupdate=utcnow)
    user = db.relationship('User')


class DuplicateReport(db.Model):
    __tablename__ = 'duplicate_report'
    id = db.Column(db.Integer, primary_key=True)
    cell_id = db.Column(db.Integer, db.ForeignKey('bingo_cell.id'), nullable=False, index=True)
    reporter_user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False)
    replacement_text = db.Column(db.String(1000), nullable=True)
    status = db.Column(db.String(16), nullable=False, default='pending')  # pending, resolved
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    resolved_at = db.Column(db.DateTime, nullable=True)

    def to_dict(self):
        return {
            'id': self.id,
            'cell_id': self.cell_id,
            'reporter_user_id': self.reporter_user_id,
            'replacement_text': self.replacement_text,
            'status': self.status,
        }
