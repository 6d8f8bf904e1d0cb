from turnrelay import create_app, socketio

# create_app re-arms persisted timeouts and starts the timer dispatcher
app = create_app()

if __name__ == '__main__':
    # Use SocketIO server to enable websockets in dev
    socketio.run(app, debug=True)
