import argparse
import logging

import numpy as np

from lstm_transducer.config import EngineConfig, FeatureConfig, ModelConfig
from lstm_transducer.engine.recognizer import Recognizer
from lstm_transducer.model.transducer import LstmTransducerModel


def _add_model_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--encoder", help="Path to encoder.onnx")
    parser.add_argument("--decoder", help="Path to decoder.onnx")
    parser.add_argument("--joiner", help="Path to joiner.onnx")
    parser.add_argument("--tokens", default=None, help="Path to tokens.txt")
    parser.add_argument(
        "--repo-id",
        default=None,
        help="Download encoder/decoder/joiner/tokens from this Hugging Face repo.",
    )
    parser.add_argument("--num-threads", type=int, default=1)
    parser.add_argument("--provider", choices=("cpu", "cuda"), default="cpu")
    parser.add_argument(
        "--debug", action="store_true", help="Log the metadata of every graph."
    )


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="lstm-transducer")
    subparsers = parser.add_subparsers(dest="command", required=True)

    info = subparsers.add_parser("info", help="Print the model dimensions.")
    _add_model_args(info)

    decode = subparsers.add_parser(
        "decode", help="Stream a saved (frames, feature_dim) .npy file."
    )
    _add_model_args(decode)
    decode.add_argument("features", help="Path to a float32 .npy feature matrix")
    decode.add_argument(
        "--push-frames",
        type=int,
        default=0,
        help="Frames per push; 0 pushes one encoder chunk shift at a time.",
    )
    decode.add_argument("--tail-padding-frames", type=int, default=None)
    decode.add_argument("--shape-log", default=None)
    return parser


def _load_model(args: argparse.Namespace) -> LstmTransducerModel:
    options = dict(
        num_threads=args.num_threads, provider=args.provider, debug=args.debug
    )
    if args.repo_id:
        return LstmTransducerModel.from_pretrained(args.repo_id, **options)
    if not (args.encoder and args.decoder and args.joiner):
        raise SystemExit("--encoder, --decoder and --joiner are required")
    return LstmTransducerModel(
        ModelConfig(
            encoder=args.encoder,
            decoder=args.decoder,
            joiner=args.joiner,
            tokens=args.tokens,
            **options,
        )
    )


def _print_dims(model: LstmTransducerModel) -> None:
    dims = model.dims
    print("LSTM transducer")
    print(f"  num_encoder_layers: {dims.num_encoder_layers}")
    print(f"  T: {dims.T}")
    print(f"  decode_chunk_len: {dims.decode_chunk_len}")
    print(f"  rnn_hidden_size: {dims.rnn_hidden_size}")
    print(f"  d_model: {dims.d_model}")
    print(f"  vocab_size: {dims.vocab_size}")
    print(f"  context_size: {dims.context_size}")


def _decode(args: argparse.Namespace) -> None:
    model = _load_model(args)
    features = np.load(args.features).astype(np.float32)
    if features.ndim != 2:
        raise SystemExit(f"Expected a 2-D feature matrix, got {features.shape}")

    config = EngineConfig(
        model=model.config,
        features=FeatureConfig(feature_dim=features.shape[1]),
        tail_padding_frames=args.tail_padding_frames,
        shape_log_path=args.shape_log,
    )
    recognizer = Recognizer(config, model=model)
    stream = recognizer.create_stream()

    step = args.push_frames if args.push_frames > 0 else model.chunk_shift
    for start in range(0, features.shape[0], step):
        stream.accept_features(features[start : start + step])
        recognizer.decode_stream(stream)
    stream.input_finished()
    recognizer.decode_stream(stream)

    result = recognizer.get_result(stream)
    print(result.text if model.symbol_table is not None else result.token_ids)


def main() -> None:
    logging.basicConfig(level=logging.INFO)
    parser = _build_parser()
    args = parser.parse_args()

    if args.command == "info":
        _print_dims(_load_model(args))
    if args.command == "decode":
        _decode(args)


if __name__ == "__main__":
    main()
