#!/usr/bin/env python3
"""
Test script to verify all NLU core imports work correctly
"""
import sys


def test_basic_import():
    """Test basic package import"""
    print("Testing basic import...")
    import nlu_core
    print(f"✅ nlu_core v{nlu_core.__version__}")


def test_config_import():
    """Test configuration imports"""
    print("\nTesting config imports...")
    from nlu_core.configs import (
        EngineConfig,
        NLUConfig,
        NLUPresets,
        QueueConfig,
        StorageConfig,
    )
    print("✅ All config classes imported")

    config = NLUPresets.fast_training()
    assert isinstance(config, NLUConfig)
    assert isinstance(config.engine, EngineConfig)
    assert isinstance(config.queue, QueueConfig)
    assert isinstance(config.storage, StorageConfig)
    print(f"✅ Created config: {config.specification_hash()}")


def test_lazy_top_level_exports():
    """Test top-level exports (lazy)"""
    print("\nTesting top-level exports...")
    from nlu_core import BotConfig, NLUApplication, create_application

    app = create_application()
    assert isinstance(app, NLUApplication)
    assert BotConfig(id="b1").languages == ("en",)
    print("✅ create_application wired an NLUApplication")


def test_core_exports():
    """Test core package exports resolve"""
    print("\nTesting core exports...")
    import nlu_core.core as core

    for name in core.__all__:
        assert getattr(core, name) is not None, name
    print(f"✅ {len(core.__all__)} core exports resolved")


def test_core_dependencies():
    """Test core dependencies are available"""
    print("\nTesting core dependencies...")
    import aiofiles
    import torch
    import yaml

    print(f"✅ torch {torch.__version__}")
    print(f"✅ pyyaml {yaml.__version__}")
    print(f"✅ aiofiles {aiofiles.__name__}")


def main():
    """Run all tests"""
    print("=" * 60)
    print("NLU Core Import Tests")
    print("=" * 60)

    try:
        test_basic_import()
        test_config_import()
        test_core_dependencies()
        test_lazy_top_level_exports()
        test_core_exports()

        print("\n" + "=" * 60)
        print("🎉 All tests passed!")
        print("=" * 60)
        return 0

    except Exception as e:
        print(f"\n❌ Test failed: {e}")
        import traceback
        traceback.print_exc()
        return 1


if __name__ == "__main__":
    sys.exit(main())
