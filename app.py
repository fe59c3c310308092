from flask import Flask, request, jsonify, Response, stream_with_context
from flask_cors import CORS
from flask_jwt_extended import JWTManager, jwt_required, create_access_token, get_jwt_identity
from flask_migrate import Migrate
from flask_bcrypt import Bcrypt
from solders.keypair import Keypair
import os
import logging
import queue
from dotenv import load_dotenv
import json
from datetime import timedelta
import time
from extensions import db

# Load environment variables from .env file
load_dotenv()

DEFAULT_PROGRAM_ID = 'AoeUXEf8rQNUjMb1299zXA4WChu46s8Y8Muygjpa2SJT'
DEFAULT_PLATFORM_ACCOUNT = '7UxgfmMiNMbjHxEayn51uRjkeyrMiR4pPXWbo8sFUrsG'


def database_uri():
    if os.getenv('DATABASE_URL'):
        return os.getenv('DATABASE_URL')
    if os.getenv('DB_HOST'):
        return f"postgresql://{os.getenv('DB_USER')}:{os.getenv('DB_PASSWORD')}@{os.getenv('DB_HOST')}:{os.getenv('DB_PORT', '5432')}/{os.getenv('DB_NAME')}"
    return 'sqlite:///auction.db'


def create_app(test_config=None):
    app = Flask(__name__)

    app.config['SQLALCHEMY_DATABASE_URI'] = database_uri()
    app.config['SQLALCHEMY_TRACK_MODIFICATIONS'] = False
    app.config['JWT_SECRET_KEY'] = os.getenv('JWT_SECRET_KEY', 'your-secret-key')  # Change in production
    app.config['JWT_ACCESS_TOKEN_EXPIRES'] = timedelta(hours=1)

    # Auction settings
    app.config['PROGRAM_ID'] = os.getenv('PROGRAM_ID', DEFAULT_PROGRAM_ID)
    app.config['PLATFORM_ACCOUNT'] = os.getenv('PLATFORM_ACCOUNT', DEFAULT_PLATFORM_ACCOUNT)
    app.config['BID_TIMEOUT_SECONDS'] = int(os.getenv('BID_TIMEOUT_SECONDS', '300'))
    app.config['MIN_INITIAL_BID'] = int(os.getenv('MIN_INITIAL_BID', '14000000'))
    app.config['LOG_LEVEL'] = os.getenv('LOG_LEVEL', 'INFO')
    app.config['CLOCK'] = time.time

    if test_config:
        app.config.update(test_config)

    logging.basicConfig(level=app.config['LOG_LEVEL'])
    app.logger.setLevel(app.config['LOG_LEVEL'])

    # Initialize extensions with app
    db.init_app(app)

    # Import models here to avoid circular imports
    from models import User, Transaction
    from addressing import derive, game_address, player_address, BID, GAME, PLAYER
    from errors import AuctionError
    from instructions import (
        CreateGame, PlaceBid, SettleIfExpired,
        create_game_accounts, place_bid_accounts, settle_accounts, read_game, read_history,
    )
    from events import EventHub
    from ledger import MAX_LAMPORTS, Ledger
    from processor import BiddingProcessor, execute
    from state import GAME_ACCOUNT_SIZE, PLAYER_ACCOUNT_SIZE, GameState, PlayerState

    migrate = Migrate(app, db)  # Add Flask-Migrate
    bcrypt = Bcrypt(app)  # Add Flask-Bcrypt
    jwt = JWTManager(app)
    CORS(app)

    # Server-sent event queues, one per open stream
    game_events = EventHub()
    app.extensions['game_events'] = game_events

    def get_ledger():
        return Ledger(db.session, clock=app.config['CLOCK'])

    def get_processor():
        return BiddingProcessor(
            get_ledger(),
            app.config['PROGRAM_ID'],
            app.config['PLATFORM_ACCOUNT'],
            timeout_seconds=app.config['BID_TIMEOUT_SECONDS'],
            min_initial_bid=app.config['MIN_INITIAL_BID'],
        )

    def current_user():
        return db.session.get(User, int(get_jwt_identity()))

    def game_summary(ledger, state):
        address = game_address(app.config['PROGRAM_ID'], state.game_id)
        summary = state.to_dict()
        summary['address'] = str(address)
        summary['escrow_balance'] = ledger.balance(address)
        return summary

    def game_ids(ledger):
        return [
            GameState.unpack(account.data).game_id
            for account in ledger.program_accounts(app.config['PROGRAM_ID'], GAME_ACCOUNT_SIZE)
        ]

    def broadcast(event_data):
        game_events.broadcast(event_data)

    # Root route to check if API is running
    @app.route('/', methods=['GET'])
    def home():
        return jsonify({"message": "API is running"}), 200

    # Authentication routes
    @app.route('/register', methods=['POST'])
    def register():
        data = request.get_json(silent=True)

        # Validate required fields
        if not data or not data.get('email') or not data.get('password') or not data.get('username'):
            return jsonify({'message': 'Missing required fields'}), 400

        # Check if password is empty
        if not data['password'].strip():
            return jsonify({'message': 'Password must be non-empty'}), 400

        # Check if user already exists
        existing_user = User.query.filter(
            (User.email == data['email']) | (User.username == data['username'])
        ).first()
        if existing_user:
            return jsonify({'message': 'User already exists with this email or username'}), 409

        # Every user gets a fresh wallet account on the ledger
        wallet = get_ledger().open_wallet(Keypair().pubkey())

        new_user = User(
            username=data['username'],
            email=data['email'],
            wallet=wallet.address,
        )

        # Hash the password
        new_user.password = bcrypt.generate_password_hash(data['password']).decode('utf-8')

        # Save to database
        db.session.add(new_user)
        db.session.commit()
        app.logger.info("registered %s with wallet %s", new_user.username, new_user.wallet)

        token = create_access_token(identity=str(new_user.id))

        return jsonify({'token': token, 'wallet': new_user.wallet}), 201

    @app.route('/login', methods=['POST'])
    def login():
        data = request.get_json(silent=True)

        # Validate required fields
        if not data or not data.get('email') or not data.get('password'):
            return jsonify({'message': 'Email and password required'}), 400

        # Find user
        user = User.query.filter_by(email=data['email']).first()

        # Check if user exists and password is correct
        if not user or not bcrypt.check_password_hash(user.password, data['password']):
            return jsonify({'message': 'Invalid email or password'}), 401

        # Generate token using Flask-JWT-Extended
        access_token = create_access_token(identity=str(user.id))

        # Return token
        return jsonify({
            'token': access_token,
            'username': user.username,
            'wallet': user.wallet,
            'balance': get_ledger().balance(user.wallet)
        }), 200

    # User profile and balance routes
    @app.route('/profile', methods=['GET'])
    @jwt_required()
    def get_profile():
        user = current_user()

        if not user:
            return jsonify({"msg": "User not found"}), 404

        return jsonify({
            "id": user.id,
            "username": user.username,
            "email": user.email,
            "wallet": user.wallet,
            "balance": get_ledger().balance(user.wallet),
            "created_at": user.created_at.isoformat()
        }), 200

    def read_amount(data):
        if not data or 'amount' not in data:
            return None, (jsonify({"msg": "Missing amount"}), 400)
        amount = data.get('amount')
        if isinstance(amount, bool) or not isinstance(amount, int):
            return None, (jsonify({"msg": "Amount must be a whole number of lamports"}), 400)
        if amount <= 0 or amount > MAX_LAMPORTS:
            return None, (jsonify({"msg": "Invalid amount"}), 400)
        return amount, None

    @app.route('/deposit', methods=['POST'])
    @jwt_required()
    def deposit():
        amount, error = read_amount(request.get_json(silent=True))
        if error:
            return error

        user = current_user()

        if not user:
            return jsonify({"msg": "User not found"}), 404

        ledger = get_ledger()
        ledger.credit(user.wallet, amount)

        transaction = Transaction(
            user_id=user.id,
            type='deposit',
            amount=amount,
            status='completed'
        )

        db.session.add(transaction)
        db.session.commit()

        return jsonify({"msg": "Deposit successful", "new_balance": ledger.balance(user.wallet)}), 200

    @app.route('/withdraw', methods=['POST'])
    @jwt_required()
    def withdraw():
        amount, error = read_amount(request.get_json(silent=True))
        if error:
            return error

        user = current_user()

        if not user:
            return jsonify({"msg": "User not found"}), 404

        ledger = get_ledger()
        if ledger.balance(user.wallet) < amount:
            return jsonify({"msg": "Insufficient balance"}), 400

        ledger.debit(user.wallet, amount)

        transaction = Transaction(
            user_id=user.id,
            type='withdraw',
            amount=amount,
            status='completed'
        )

        db.session.add(transaction)
        db.session.commit()

        return jsonify({"msg": "Withdrawal successful", "new_balance": ledger.balance(user.wallet)}), 200

    # Game routes
    def all_games(live_only=False):
        ledger = get_ledger()
        states = [
            GameState.unpack(account.data)
            for account in ledger.program_accounts(app.config['PROGRAM_ID'], GAME_ACCOUNT_SIZE)
        ]
        if live_only:
            states = [state for state in states if not state.game_ended]
        states.sort(key=lambda state: state.game_id)
        return [game_summary(ledger, state) for state in states]

    @app.route('/games', methods=['GET'])
    def list_games():
        return jsonify({'games': all_games()}), 200

    @app.route('/games/live', methods=['GET'])
    def list_live_games():
        return jsonify({'games': all_games(live_only=True)}), 200

    @app.route('/games/next-id', methods=['GET'])
    def next_game_id():
        return jsonify({'game_id': max(game_ids(get_ledger()), default=0) + 1}), 200

    @app.route('/games', methods=['POST'])
    @jwt_required()
    def create_game():
        data = request.get_json(silent=True)

        if not data or 'initial_bid_amount' not in data:
            return jsonify({"msg": "Missing initial bid amount"}), 400

        user = current_user()
        if not user:
            return jsonify({"msg": "User not found"}), 404

        game_id = data.get('game_id')
        if game_id is None:
            game_id = max(game_ids(get_ledger()), default=0) + 1

        instruction = CreateGame(game_id=game_id, initial_bid_amount=data.get('initial_bid_amount'))
        accounts = create_game_accounts(app.config['PROGRAM_ID'], instruction.game_id, user.wallet)
        processor = get_processor()
        outcome = execute(processor, instruction, accounts)

        game = game_summary(processor.ledger, outcome.state)
        broadcast({'type': 'game_created', 'game': game})

        return jsonify({
            'msg': 'Game created',
            'game': game,
            'player': str(accounts.player),
            'bid': str(accounts.bid),
        }), 201

    @app.route('/games/<int:game_id>', methods=['GET'])
    def get_game(game_id):
        ledger = get_ledger()
        state = read_game(ledger, app.config['PROGRAM_ID'], game_id)
        if state is None:
            return jsonify({"msg": "Game not found"}), 404
        return jsonify(game_summary(ledger, state)), 200

    @app.route('/games/<int:game_id>/bids', methods=['GET'])
    def get_bid_history(game_id):
        ledger = get_ledger()
        program_id = app.config['PROGRAM_ID']
        state = read_game(ledger, program_id, game_id)
        if state is None:
            return jsonify({"msg": "Game not found"}), 404

        bids = []
        for seq, address, record in read_history(ledger, program_id, game_id, state.total_bids):
            if record is None:
                continue
            entry = record.to_dict()
            entry['seq'] = seq
            entry['address'] = str(address)
            player = player_address(program_id, game_id, record.bidder, seq)
            data = ledger.read(player)
            if len(data) == PLAYER_ACCOUNT_SIZE:
                entry['player'] = PlayerState.unpack(data).to_dict()
            bids.append(entry)

        return jsonify({'game_id': game_id, 'bids': bids}), 200

    @app.route('/games/<int:game_id>/bids', methods=['POST'])
    @jwt_required()
    def place_bid(game_id):
        data = request.get_json(silent=True)

        if not data or 'bid_amount' not in data or 'bid_count' not in data:
            return jsonify({"msg": "Missing required fields"}), 400

        user = current_user()
        if not user:
            return jsonify({"msg": "User not found"}), 404

        ledger = get_ledger()
        if read_game(ledger, app.config['PROGRAM_ID'], game_id) is None:
            return jsonify({"msg": "Game not found"}), 404

        instruction = PlaceBid(bid_amount=data.get('bid_amount'), bid_count=data.get('bid_count'))
        accounts = place_bid_accounts(
            ledger, app.config['PROGRAM_ID'], game_id, user.wallet, app.config['PLATFORM_ACCOUNT']
        )
        processor = get_processor()
        outcome = execute(processor, instruction, accounts)
        game = game_summary(processor.ledger, outcome.state)

        if outcome.settled:
            settlement = outcome.settlement.to_dict()
            broadcast({'type': 'game_settled', 'game': game, 'settlement': settlement})
            return jsonify({'msg': 'Bidding window closed; game settled', 'game': game, 'settlement': settlement}), 200

        bid = outcome.bid.to_dict()
        bid['seq'] = outcome.state.total_bids
        broadcast({'type': 'bid_placed', 'game': game, 'bid': bid})
        return jsonify({'msg': 'Bid placed', 'game': game, 'bid': bid}), 201

    @app.route('/games/<int:game_id>/settle', methods=['POST'])
    @jwt_required()
    def settle_game(game_id):
        ledger = get_ledger()
        if read_game(ledger, app.config['PROGRAM_ID'], game_id) is None:
            return jsonify({"msg": "Game not found"}), 404

        accounts = settle_accounts(ledger, app.config['PROGRAM_ID'], game_id, app.config['PLATFORM_ACCOUNT'])
        processor = get_processor()
        outcome = execute(processor, SettleIfExpired(), accounts)

        game = game_summary(processor.ledger, outcome.state)
        settlement = outcome.settlement.to_dict()
        broadcast({'type': 'game_settled', 'game': game, 'settlement': settlement})
        return jsonify({'msg': 'Game settled', 'game': game, 'settlement': settlement}), 200

    @app.route('/games/<int:game_id>/addresses', methods=['GET'])
    @jwt_required()
    def get_addresses(game_id):
        user = current_user()
        if not user:
            return jsonify({"msg": "User not found"}), 404

        program_id = app.config['PROGRAM_ID']
        state = read_game(get_ledger(), program_id, game_id)
        seq = state.total_bids + 1 if state is not None else 1

        game_pda, game_salt = derive(program_id, GAME, game_id)
        bid_pda, bid_salt = derive(program_id, BID, game_id, seq=seq)
        player_pda, player_salt = derive(program_id, PLAYER, game_id, identity=user.wallet, seq=seq)

        return jsonify({
            'game_id': game_id,
            'bid_count': seq,
            'game': {'address': str(game_pda), 'salt': game_salt},
            'bid': {'address': str(bid_pda), 'salt': bid_salt},
            'player': {'address': str(player_pda), 'salt': player_salt},
        }), 200

    # SSE endpoint for live game updates
    @app.route('/events/connect', methods=['GET'])
    @jwt_required()
    def connect_to_events():
        user_id = get_jwt_identity()

        # Each stream gets its own queue
        connection_id, events = game_events.connect()

        def event_stream():
            # Send initial connection event
            yield f"data: {json.dumps({'type': 'connected', 'user_id': user_id, 'connection_id': connection_id})}\n\n"

            # Keep connection alive and send events as they occur
            try:
                while True:
                    try:
                        event = events.get(timeout=30)
                        yield f"data: {json.dumps(event)}\n\n"
                    except queue.Empty:
                        # Send heartbeat
                        yield f"data: {json.dumps({'type': 'heartbeat'})}\n\n"
            finally:
                game_events.disconnect(connection_id)

        response = Response(stream_with_context(event_stream()),
                            mimetype="text/event-stream")
        # Streams closed before their first read never reach the finally block
        response.call_on_close(lambda: game_events.disconnect(connection_id))
        return response

    # Add error handlers
    @app.errorhandler(AuctionError)
    def auction_error(error):
        db.session.rollback()
        app.logger.warning("rejected %s %s: %s", request.method, request.path, error)
        return jsonify(error.to_dict()), 400

    @app.errorhandler(404)
    def not_found(error):
        return jsonify({"error": "Not found", "message": "The requested URL was not found on the server"}), 404

    @app.errorhandler(500)
    def internal_error(error):
        db.session.rollback()
        return jsonify({"error": "Internal server error", "message": "The server encountered an internal error"}), 500

    # Command to initialize tables when needed (not used with migrations)
    @app.cli.command("init-db")
    def init_db_command():
        """Create the database tables."""
        db.create_all()
        print("Initialized the database.")

    return app


if __name__ == '__main__':
    create_app().run()
