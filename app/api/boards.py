from flask import Blueprint, request, jsonify, current_app
from flask_jwt_extended import get_jwt_identity
from marshmallow import Schema, fields, validates, ValidationError

from app.extensions import tenant_spaces
from app.api.decorators import tenant_required, permission_required, feature_limit_required
from app.models.tenant_space import Board

bp = Blueprint('boards', __name__)


class CreateBoardSchema(Schema):
    name = fields.Str(required=True, error_messages={"required": "Name is required"})
    description = fields.Str(required=False, load_default=None, allow_none=True)
    is_private = fields.Bool(load_default=False)
    color = fields.Str(load_default='#3B82F6')

    @validates('name')
    def validate_name(self, value, **kwargs):
        if not value or not value.strip():
            raise ValidationError("Name cannot be empty")
        if len(value) > 255:
            raise ValidationError("Name must be less than 255 characters")


create_board_schema = CreateBoardSchema()


@bp.route('', methods=['GET'])
@tenant_required
@permission_required('view boards')
def list_boards(ctx):
    with tenant_spaces.session(ctx) as session:
        boards = session.query(Board).order_by(Board.created_at.desc(), Board.id.desc()).all()
        return jsonify({"boards": [b.to_dict() for b in boards]}), 200


@bp.route('', methods=['POST'])
@tenant_required
@permission_required('create boards')
@feature_limit_required('max_boards')
def create_board(ctx):
    """
    Create a board (gated by the plan's max_boards).

    Returns:
        201: Board created
        400: Validation error
        403: Missing permission, or plan limit reached ({"feature", "limit"})
    """
    data = request.get_json(silent=True) or {}
    try:
        validated = create_board_schema.load(data)
    except ValidationError as err:
        return jsonify({"error": "Validation failed", "details": err.messages}), 400

    with tenant_spaces.session(ctx) as session:
        board = Board(created_by=int(get_jwt_identity()), **validated)
        session.add(board)
        session.flush()
        result = board.to_dict()

    current_app.logger.info(f"Board created: tenant={ctx.slug}, board_id={result['id']}")
    return jsonify({"board": result}), 201


@bp.route('/<int:board_id>', methods=['DELETE'])
@tenant_required
@permission_required('delete boards')
def delete_board(board_id, ctx):
    with tenant_spaces.session(ctx) as session:
        board = session.get(Board, board_id)
        if board is None:
            return jsonify({"error": "Board not found"}), 404
        session.delete(board)

    current_app.logger.info(f"Board deleted: tenant={ctx.slug}, board_id={board_id}")
    return jsonify({"message": "Board deleted successfully"}), 200
