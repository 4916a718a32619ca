from .mock_cd48 import MockCD48, MockPort, MockTransport
